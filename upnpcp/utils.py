"""This class contains utility functions used internally by upnpcp."""

import re


FIRST_CAP_RE = re.compile("([^_])([A-Z][a-z]+)")
ALL_CAP_RE = re.compile("([a-z0-9])([A-Z])")


def camel_to_underscore(string):
    """Convert camelcase to lowercase and underscore.

    Recipe from http://stackoverflow.com/a/1176023

    Args:
        string (str): The string to convert.

    Returns:
        str: The converted string.

    >>> camel_to_underscore("NewExternalIPAddress")
    'new_external_ip_address'
    """
    string = string.replace("-", "_")
    string = FIRST_CAP_RE.sub(r"\1_\2", string)
    return ALL_CAP_RE.sub(r"\1_\2", string).lower()


def first_cap(string):
    """Return upper cased first character"""
    return string[0].upper() + string[1:]


def underscore_to_camel(string):
    """Convert an argument name to the upper camel case used on the wire.

    Names which are already camel cased keep their inner capitals.

    >>> underscore_to_camel("desired_volume")
    'DesiredVolume'
    >>> underscore_to_camel("InstanceID")
    'InstanceID'
    """
    return "".join(first_cap(part) for part in string.split("_") if part)


def prettify(unicode_text):
    """Return a pretty-printed version of a unicode XML string.

    Useful for debugging.

    Args:
        unicode_text (str): A text representation of XML (unicode,
            *not* utf-8).

    Returns:
        str: A pretty-printed version of the input.

    """
    import xml.dom.minidom  # pylint: disable=import-outside-toplevel

    reparsed = xml.dom.minidom.parseString(unicode_text.encode("utf-8"))
    return reparsed.toprettyxml(indent="  ", newl="\n")
