"""py.test hooks and fixtures shared by the test modules."""
from os import path
import codecs
import time


import pytest

from upnpcp.description import ServiceDescription

THISDIR = path.dirname(path.abspath(__file__))

RENDERING_CONTROL = "urn:schemas-upnp-org:service:RenderingControl:1"


class Helpers:
    """Test helper functions"""

    @staticmethod
    def wait_for(predicate, timeout=2.0):
        """Poll ``predicate`` until it is true, or ``timeout`` runs out."""
        deadline = time.time() + timeout
        while time.time() < deadline:
            if predicate():
                return True
            time.sleep(0.005)
        return predicate()


@pytest.fixture
def helpers():
    return Helpers


class DataLoader:
    """A class that loads test data"""

    def __init__(self, data_sub_dir):
        self.data_dir = path.join(THISDIR, "data", data_sub_dir)

    def load_xml(self, filename):
        """Return XML string loaded from filename under ``self.data_sub_dir``"""
        xml_string = ""
        with codecs.open(path.join(self.data_dir, filename), encoding="utf-8") as file_:
            for line in file_:
                # Allow for indenting the XML source
                xml_string += line.lstrip(" ")
        return xml_string


@pytest.fixture
def scpd_text():
    """The SCPD of a RenderingControl service."""
    return DataLoader("scpd").load_xml("RenderingControl1.xml")


@pytest.fixture
def description(scpd_text):
    return ServiceDescription.from_xml(scpd_text, RENDERING_CONTROL)


@pytest.fixture
def event_loader():
    return DataLoader("events")
