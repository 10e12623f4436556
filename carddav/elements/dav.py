#!/usr/bin/env python
from typing import ClassVar

from .base import BaseElement
from .base import ValuedBaseElement
from carddav.lib.namespace import ns


# Operations
class Propfind(BaseElement):
    tag: ClassVar[str] = ns("D", "propfind")


class SyncCollection(BaseElement):
    tag: ClassVar[str] = ns("D", "sync-collection")


# Conditions
class SyncToken(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "sync-token")


class SyncLevel(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "sync-level")


# Components / Data
class Prop(BaseElement):
    tag: ClassVar[str] = ns("D", "prop")


class Collection(BaseElement):
    tag: ClassVar[str] = ns("D", "collection")


# Properties
class ResourceType(BaseElement):
    tag: ClassVar[str] = ns("D", "resourcetype")


class DisplayName(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "displayname")


class GetEtag(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "getetag")


class Href(ValuedBaseElement):
    tag: ClassVar[str] = ns("D", "href")


class SupportedReportSet(BaseElement):
    tag: ClassVar[str] = ns("D", "supported-report-set")


class SupportedReport(BaseElement):
    tag: ClassVar[str] = ns("D", "supported-report")


class Report(BaseElement):
    tag: ClassVar[str] = ns("D", "report")


## RFC5995
class AddMember(BaseElement):
    tag: ClassVar[str] = ns("D", "add-member")


class CurrentUserPrincipal(BaseElement):
    tag: ClassVar[str] = ns("D", "current-user-principal")


class Unauthenticated(BaseElement):
    tag: ClassVar[str] = ns("D", "unauthenticated")


# Multistatus envelope
class Response(BaseElement):
    tag: ClassVar[str] = ns("D", "response")


class Status(BaseElement):
    tag: ClassVar[str] = ns("D", "status")


class PropStat(BaseElement):
    tag: ClassVar[str] = ns("D", "propstat")


class MultiStatus(BaseElement):
    tag: ClassVar[str] = ns("D", "multistatus")


class Error(BaseElement):
    tag: ClassVar[str] = ns("D", "error")


class ResponseDescription(BaseElement):
    tag: ClassVar[str] = ns("D", "responsedescription")


# Preconditions
class ValidSyncToken(BaseElement):
    tag: ClassVar[str] = ns("D", "valid-sync-token")
