# pylint: disable=invalid-name,wrong-import-position,redefined-builtin

"""This class contains XML related utility functions."""


import sys
import re

import xml.etree.ElementTree as XML


# Create regular expression for filtering invalid characters, from:
# http://stackoverflow.com/questions/1707890/
# fast-way-to-filter-illegal-xml-unicode-chars-in-python

illegal_unichrs = [
    (0x00, 0x08),
    (0x0B, 0x0C),
    (0x0E, 0x1F),
    (0x7F, 0x84),
    (0x86, 0x9F),
    (0xD800, 0xDFFF),
    (0xFDD0, 0xFDDF),
    (0xFFFE, 0xFFFF),
]

illegal_ranges = [
    "{}-{}".format(chr(low), chr(high))
    for (low, high) in illegal_unichrs
    if low < sys.maxunicode
]

illegal_xml_re = re.compile("[%s]" % "".join(illegal_ranges))


#: Namespaces used by UPnP documents, and abbreviations, used by `ns_tag`.
NAMESPACES = {
    "s": "http://schemas.xmlsoap.org/soap/envelope/",
    "e": "urn:schemas-upnp-org:event-1-0",
    "scpd": "urn:schemas-upnp-org:service-1-0",
    "control": "urn:schemas-upnp-org:control-1-0",
}

#: The SOAP encoding style declared on every envelope.
SOAP_ENCODING = "http://schemas.xmlsoap.org/soap/encoding/"

# Register common namespaces to assist in serialisation (avoids the ns:0
# prefixes in XML output )
for prefix, uri in NAMESPACES.items():
    XML.register_namespace(prefix, uri)


def ns_tag(ns_id, tag):
    """Return a namespace/tag item.

    Args:
        ns_id (str): A namespace id, eg ``"e"`` (see `NAMESPACES`)
        tag (str): An XML tag, eg ``"property"``

    Returns:
        str: A fully qualified tag.

    The ns_id is translated to a full name space via the :const:`NAMESPACES`
    constant::

        >>> xml.ns_tag('e', 'property')
        '{urn:schemas-upnp-org:event-1-0}property'
    """
    return "{{{}}}{}".format(NAMESPACES[ns_id], tag)


def local_name(tag):
    """Strip any ``{namespace}`` from an ElementTree tag."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def fromstring_lenient(text):
    """Parse XML, retrying once with illegal characters filtered out.

    Args:
        text (str or bytes): The document.

    Returns:
        :class:`~xml.etree.ElementTree.Element`: The root element.

    Raises:
        xml.etree.ElementTree.ParseError: if the filtered text still does
            not parse.
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", "replace")
    try:
        return XML.fromstring(text.encode("utf-8"))
    except XML.ParseError:
        filtered = illegal_xml_re.sub("", text)
        return XML.fromstring(filtered.encode("utf-8"))
