from requests.auth import AuthBase


class HTTPBearerAuth(AuthBase):
    """The bearer token is passed as the password"""

    def __init__(self, password: str) -> None:
        self.password = password

    def __eq__(self, other: object) -> bool:
        return self.password == getattr(other, "password", None)

    def __ne__(self, other: object) -> bool:
        return not self == other

    def __call__(self, r):
        token = self.password
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        r.headers["Authorization"] = f"Bearer {token}"
        return r
