"""Classes for handling upnpcp's basic SOAP requirements.

This module does not handle anything like the full `SOAP Specification
<http://www.w3.org/TR/soap/>`_ , but is enough for UPnP control. A
`SoapTransport` is the default RPC transport used by
:class:`~upnpcp.services.ControlPoint`. Any object with a compatible
``invoke`` method may be used instead.
"""

import datetime
import logging
import re
from xml.parsers.expat import ExpatError
from xml.sax.saxutils import escape

import requests
import xmltodict

from . import config
from .exceptions import MalformedResponse, SoapFault, TransportFailure
from .utils import camel_to_underscore, prettify, underscore_to_camel
from .xml import SOAP_ENCODING, XML, fromstring_lenient, ns_tag

_LOG = logging.getLogger(__name__)

#: Options which are always computed, and never taken from call options.
PROTECTED_OPTIONS = ("soap_action", "namespace", "attributes")

# From table 3.3 in
# http://upnp.org/specs/arch/UPnP-arch-DeviceArchitecture-v1.1.pdf
# Error codes between 700-799 are defined for particular services.
UPNP_ERRORS = {
    400: "Bad Request",
    401: "Invalid Action",
    402: "Invalid Args",
    404: "Invalid Var",
    412: "Precondition Failed",
    501: "Action Failed",
    600: "Argument Value Invalid",
    601: "Argument Value Out of Range",
    602: "Optional Action Not Implemented",
    603: "Out Of Memory",
    604: "Human Intervention Required",
    605: "String Argument Too Long",
    606: "Action Not Authorized",
    607: "Signature Failure",
    608: "Signature Missing",
    609: "Not Encrypted",
    610: "Invalid Sequence",
    611: "Invalid Control URL",
    612: "No Such Session",
}

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ISO_DATETIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$"
)


def to_upnp_value(value):
    """Serialise a Python value as UPnP text.

    Booleans become ``1``/``0`` and temporal values ISO 8601. Anything else
    is converted with ``str``.
    """
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    return "%s" % value


def typecast(text):
    """Convert ``true``/``false`` and ISO 8601 dates/times to Python values.

    Text which does not look like either is returned unchanged.
    """
    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        if ISO_DATE_RE.match(text):
            return datetime.date.fromisoformat(text)
        if ISO_DATETIME_RE.match(text):
            return datetime.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    return text


# A complete RPC SOAP message should look something like this. See generally
# http://www.w3.org/TR/2000/NOTE-SOAP-20000508/

# POST path of control URL HTTP/1.1
# HOST: host of control URL:port of control URL
# CONTENT-LENGTH: bytes in body
# CONTENT-TYPE: text/xml; charset="utf-8"
# SOAPACTION: "urn:schemas-upnp-org:service:serviceType:v#actionName"
#
# <?xml version="1.0"?>
# <s:Envelope
#   xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"
#   s:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
#   <s:Body>
#       <u:actionName
#           xmlns:u="urn:schemas-upnp-org:service:serviceType:v">
#           <argumentName>in arg value</argumentName>
#           ... other in args and their values go here, if any
#       </u:actionName>
#   </s:Body>
# </s:Envelope>

# pylint: disable=too-many-instance-attributes, too-many-arguments


class SoapMessage:

    """A SOAP Message representing a remote procedure call.

    Uses the `Requests <http://www.python-requests.org/en/latest/>`_ library
    for communication with a SOAP server.
    """

    def __init__(
        self,
        endpoint,
        method,
        parameters=None,
        http_headers=None,
        soap_action=None,
        soap_header=None,
        namespace=None,
        **request_args
    ):
        """
        Args:
            endpoint (str): The SOAP endpoint URL for this client.
            method (str): The name of the method to call.
            parameters (list): A list of (name, value) tuples containing
                the parameters to pass to the method. Default `None`.
            http_headers (dict): A dict in the form {'Header': 'Value,..}
                containing http headers to use for the http request.
                Content-type and SOAPACTION headers will be created
                automatically. Content-type may be replaced here, SOAPACTION
                may not.
            soap_action (str): The value of the SOAPACTION header.
                Default 'None`.
            soap_header (str): A string representation of the XML to be
                used for the SOAP Header. Default `None`.
            namespace (str): The namespace URI to use for the method, bound
                to the ``u`` prefix. `None`, by default.
            **request_args: Other keyword parameters will be passed to the
                Requests request which is used to handle the http
                communication. For example, a timeout value can be set.
        """
        self.endpoint = endpoint
        self.method = method
        self.parameters = [] if parameters is None else parameters
        self.http_headers = http_headers
        self.soap_action = soap_action
        self.soap_header = soap_header
        self.namespace = namespace
        self.request_args = request_args

    # pylint:disable=no-self-use
    def prepare_headers(self, http_headers, soap_action):
        """Prepare the http headers for sending.

        Add the SOAPACTION header to the others.

        Args:
            http_headers (dict): A dict in the form {'Header': 'Value,..}
                containing http headers to use for the http request.
            soap_action (str): The value of the SOAPACTION header.

        Returns:
            dict: headers including the SOAPACTION header.
        """

        headers = {"Content-Type": 'text/xml; charset="utf-8"'}
        if http_headers is not None:
            headers.update(http_headers)
        if soap_action is not None:
            headers.update({"SOAPACTION": '"{0}"'.format(soap_action)})
        return headers

    def prepare_soap_header(self, soap_header):
        """Prepare the SOAP header for sending.

        Wraps the soap header in appropriate tags.

        Args:
            soap_header (str): A string representation of the XML to be
                used for the SOAP Header

        Returns:
            str: The soap header wrapped in appropriate tags.
        """

        if soap_header is not None:
            return "<s:Header>{0}</s:Header>".format(soap_header)
        return ""

    def prepare_soap_body(self, method, parameters, namespace):
        """Prepare the SOAP message body for sending.

        Args:
            method (str): The name of the method to call.
            parameters (list): A list of (name, value) tuples containing
                the parameters to pass to the method.
            namespace (str): The XML namespace to use for the method.

        Returns:
            str: A properly formatted SOAP Body.
        """

        tags = []
        for name, value in parameters:
            tag = "<{name}>{value}</{name}>".format(
                name=name, value=escape(to_upnp_value(value), {'"': "&quot;"})
            )
            tags.append(tag)

        wrapped_params = "".join(tags)
        # Prepare the SOAP Body
        if namespace is not None:
            soap_body = (
                '<u:{method} xmlns:u="{namespace}">'
                "{params}"
                "</u:{method}>".format(
                    method=method, params=wrapped_params, namespace=namespace
                )
            )
        else:
            soap_body = "<{method}>{params}</{method}>".format(
                method=method, params=wrapped_params
            )

        return soap_body

    def prepare_soap_envelope(self, prepared_soap_header, prepared_soap_body):
        """Prepare the SOAP Envelope for sending.

        Args:
            prepared_soap_header (str): A SOAP Header prepared by
                `prepare_soap_header`
            prepared_soap_body (str): A SOAP Body prepared by
                `prepare_soap_body`

        Returns:
            str: A prepared SOAP Envelope
        """

        soap_env_template = (
            '<?xml version="1.0"?>'
            '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"'
            ' s:encodingStyle="{encoding}">'
            "{soap_header}"
            "<s:Body>"
            "{soap_body}"
            "</s:Body>"
            "</s:Envelope>"
        )
        return soap_env_template.format(
            encoding=SOAP_ENCODING,
            soap_header=prepared_soap_header,
            soap_body=prepared_soap_body,
        )

    def prepare(self):
        """Prepare the SOAP message for sending to the server."""
        headers = self.prepare_headers(self.http_headers, self.soap_action)

        soap_header = self.prepare_soap_header(self.soap_header)
        soap_body = self.prepare_soap_body(self.method, self.parameters, self.namespace)
        data = self.prepare_soap_envelope(soap_header, soap_body)
        return (headers, data)

    def call(self):
        """Call the SOAP method on the server.

        Returns:
            :class:`~xml.etree.ElementTree.Element`: the ``<s:Body>``
            element of the response.

        Raises:
             SoapFault: if a SOAP error occurs.
             TransportFailure: if any other non-2xx http status is returned.
             MalformedResponse: if a successful response is not valid XML.
        """

        headers, data = self.prepare()

        # Check log level before logging XML, since prettifying it is
        # expensive
        if _LOG.isEnabledFor(logging.DEBUG):
            _LOG.debug("Sending %s, %s", headers, prettify(data))

        response = requests.post(
            self.endpoint,
            headers=headers,
            data=data.encode("utf-8"),
            **self.request_args
        )
        _LOG.debug("Received %s, %s", response.headers, response.text)
        status = response.status_code
        if 200 <= status < 300:
            # The response is good. Extract the Body
            try:
                tree = fromstring_lenient(response.content)
            except XML.ParseError as error:
                raise MalformedResponse(
                    "Response to {} is not valid XML".format(self.method)
                ) from error
            body = tree.find(ns_tag("s", "Body"))
            if body is None:
                raise MalformedResponse(
                    "Response to {} has no SOAP Body".format(self.method)
                )
            return body
        if status == 500:
            # We probably have a SOAP Fault
            self.handle_fault(status, response.text)
        # Something else has gone wrong. Probably a network error.
        raise TransportFailure(status, response.text)

    # pylint:disable=no-self-use
    def handle_fault(self, status, xml_error):
        """Disect a SOAP/UPnP error, and raise an appropriate exception.

        Returns without raising if ``xml_error`` is not a SOAP Fault.

        Args:
            status (int): The http status code.
            xml_error (str): The body of the response.
        """

        # An error code looks something like this:

        # <s:Envelope
        #   xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"
        #   s:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
        #   <s:Body>
        #       <s:Fault>
        #           <faultcode>s:Client</faultcode>
        #           <faultstring>UPnPError</faultstring>
        #           <detail>
        #               <UPnPError xmlns="urn:schemas-upnp-org:control-1-0">
        #                   <errorCode>error code</errorCode>
        #                   <errorDescription>error string</errorDescription>
        #               </UPnPError>
        #           </detail>
        #       </s:Fault>
        #   </s:Body>
        # </s:Envelope>

        try:
            tree = fromstring_lenient(xml_error)
        except XML.ParseError:
            return
        fault = tree.find(".//" + ns_tag("s", "Fault"))
        if fault is None:
            return
        error_code = fault.findtext(".//" + ns_tag("control", "errorCode"))
        description = fault.findtext(".//" + ns_tag("control", "errorDescription"))
        if error_code is not None and not description:
            try:
                description = UPNP_ERRORS.get(int(error_code), "")
            except ValueError:
                description = ""
        raise SoapFault(
            status,
            xml_error,
            faultcode=fault.findtext("faultcode"),
            faultstring=fault.findtext("faultstring"),
            error_code=error_code,
            error_description=description or "",
        )


class SoapTransport:

    """The RPC transport used to invoke UPnP actions.

    Sends one `SoapMessage` per call, and turns the response body into a
    nested mapping with `xmltodict`. Element names are converted to lower
    case with underscores, eg ``<CurrentVolume>`` becomes ``current_volume``.
    """

    def __init__(self, endpoint, namespace, advanced_typecasting=True):
        """
        Args:
            endpoint (str): The control URL of the service.
            namespace (str): The service type URN.
            advanced_typecasting (bool): If `True` (the default),
                ``true``/``false`` and ISO 8601 dates in responses are
                converted to Python values. Otherwise all values are text.
        """
        self.endpoint = endpoint
        self.namespace = namespace
        self.advanced_typecasting = advanced_typecasting

    def __repr__(self):
        return "<{} '{}' at {}>".format(
            self.__class__.__name__, self.endpoint, hex(id(self))
        )

    def invoke(self, action_name, args, soap_action, options=None):
        """Invoke an action.

        Args:
            action_name (str): The name of the action.
            args (list): ``(name, value)`` tuples, in the order they should be
                sent. Names are converted to upper camel case.
            soap_action (str): The SOAPACTION, ``"{urn}#{action}"``.
            options (dict): Call options: ``http_headers``,
                ``soap_header`` or any keyword argument accepted by
                `requests.post` (eg ``timeout`` or ``auth``). The
                protected options ``soap_action``, ``namespace`` and
                ``attributes`` are ignored.

        Returns:
            dict: The children of the response's SOAP Body, usually a single
            ``{action}_response`` key.
        """
        request_args = {"timeout": config.REQUEST_TIMEOUT}
        for key, value in (options or {}).items():
            if key in PROTECTED_OPTIONS:
                _LOG.debug("Ignoring protected call option %s", key)
                continue
            request_args[key] = value

        message = SoapMessage(
            self.endpoint,
            action_name,
            parameters=[(underscore_to_camel(name), value) for name, value in args],
            soap_action=soap_action,
            namespace=self.namespace,
            **request_args
        )
        body = message.call()
        return self.parse_body(body)

    def parse_body(self, body):
        """Turn a ``<s:Body>`` element into a nested mapping.

        Args:
            body (:class:`~xml.etree.ElementTree.Element`): The body.

        Returns:
            dict: The body's children. An empty body gives ``{}``.
        """

        # pylint: disable=unused-argument
        def postprocessor(path, key, value):
            key = camel_to_underscore(key.rsplit(":", 1)[-1])
            if self.advanced_typecasting and isinstance(value, str):
                value = typecast(value)
            return key, value

        try:
            parsed = xmltodict.parse(
                XML.tostring(body, encoding="unicode"),
                xml_attribs=False,
                postprocessor=postprocessor,
            )
        except ExpatError as error:
            raise MalformedResponse("Could not parse response body") from error
        result = parsed.get("body")
        return dict(result) if isinstance(result, dict) else {}
