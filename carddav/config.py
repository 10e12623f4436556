import json
import logging
import os
from fnmatch import fnmatch

import yaml

"""
Configuration file parsing for get_davclient.  The config file is JSON
or YAML, a dict of sections, each section a dict of connection
parameters prefixed with carddav_, i.e.

    {
      "default": {
        "carddav_url": "https://dav.example.com/",
        "carddav_username": "alice",
        "carddav_password": "secret"
      },
      "work": {"inherits": "default", "carddav_username": "alice.work"},
      "all": {"contains": ["default", "work"]}
    }
"""

log = logging.getLogger("carddav")


def expand_config_section(config, section="default", blacklist=None):
    """
    In the "normal" case, will return [ section ]

    We allow:

    * * includes all sections in config file
    * "Meta"-sections in the config file with the keyword "contains" followed by a list of section names
    * Recursive "meta"-sections
    * Glob patterns (work_* for all sections starting with work_)
    * Glob patterns in "meta"-sections
    """
    if section == "*":
        return [x for x in config if not config[x].get("disable", False)]

    ## If it's not a glob-pattern ...
    if set(section).isdisjoint(set("[*?")):
        ## If it's referring to a "meta section" with the "contains" keyword
        if "contains" in config[section]:
            results = []
            if not blacklist:
                blacklist = set()
            blacklist.add(section)
            for subsection in config[section]["contains"]:
                if subsection not in results and subsection not in blacklist:
                    for recursivesubsection in expand_config_section(
                        config, subsection, blacklist
                    ):
                        if recursivesubsection not in results:
                            results.append(recursivesubsection)
            return results
        else:
            ## Disabled sections should be ignored
            if config.get(section, {}).get("disable", False):
                return []
            return [section]

    ## section name is a glob pattern
    matching_sections = [x for x in config if fnmatch(x, section)]
    results = []
    for s in matching_sections:
        if set(s).isdisjoint(set("[*?")):
            for x in expand_config_section(config, s):
                if x not in results:
                    results.append(x)
        elif s not in results:
            ## Section names shouldn't contain []?* ... but in case they do ... don't recurse
            results.append(s)
    return results


def config_section(config, section="default"):
    if section in config and "inherits" in config[section]:
        ret = config_section(config, config[section]["inherits"])
    else:
        ret = {}
    if section in config:
        ret.update(config[section])
    return ret


def read_config(fn, interactive_error=False):
    """
    Reads a JSON or YAML config file.  Without a file name, the usual
    locations are tried.  Returns {} if nothing usable was found.
    """
    if not fn:
        cfgdir = f"{os.environ.get('HOME', '/')}/.config"
        for config_file in (
            f"{cfgdir}/carddav/carddav.conf",
            f"{cfgdir}/carddav/carddav.yaml",
            f"{cfgdir}/carddav/carddav.json",
            "/etc/carddav/carddav.conf",
        ):
            cfg = read_config(config_file)
            if cfg:
                return cfg
        return {}

    try:
        with open(fn, "rb") as config_file:
            data = config_file.read()
    except FileNotFoundError:
        log.debug(f"no config file found at {fn}")
        return {}

    try:
        return json.loads(data)
    except json.decoder.JSONDecodeError:
        pass

    try:
        ret = yaml.safe_load(data)
    except yaml.YAMLError:
        if interactive_error:
            log.error(
                f"config file {fn} exists but is neither valid json nor yaml.  Be aware that the interactive configuration will ignore and overwrite the current broken config file",
                exc_info=True,
            )
        else:
            log.error(
                f"config file {fn} exists but is neither valid json nor yaml.  It will be ignored",
                exc_info=True,
            )
        return {}
    if not isinstance(ret, dict):
        log.error(f"config file {fn} does not contain a dict of sections.  It will be ignored")
        return {}
    return ret
