import pytest

from ftpsclient.core.errors import FeatureParsingError
from ftpsclient.core.features import Feature, FeatureCollection

FEAT_REPLY = (
    "211-Extensions supported:\r\n"
    " MLST size*;create;modify*;perm;media-type\r\n"
    " SIZE\r\n"
    " REST STREAM\r\n"
    " HASH SHA-1;SHA-256*;MD5\r\n"
    " MODE Z\r\n"
    "211 END"
)


def test_parse_collection():
    features = FeatureCollection.parse(FEAT_REPLY)
    assert len(features) == 5
    assert "size" in features
    assert features.contains("REST", "stream")
    assert features.contains("MODE", "Z")
    assert not features.contains("MODE", "B")
    assert not features.contains("EPSV")


def test_default_argument():
    features = FeatureCollection.parse(FEAT_REPLY)
    assert features.find("HASH").default_argument.name == "SHA-256"
    assert features.find("MLST").default_argument.name == "size"
    assert features.find("SIZE").default_argument is None


def test_semicolon_arguments_keep_spaces_out():
    feature = Feature.parse(" MLST type*;perm*;size*;")
    assert [a.name for a in feature.arguments] == ["type", "perm", "size"]
    assert all(a.is_default for a in feature.arguments)


def test_space_separated_arguments():
    feature = Feature.parse(" AUTH TLS SSL")
    assert feature.name == "AUTH"
    assert feature.contains_argument("ssl")


def test_no_features():
    features = FeatureCollection.parse("211 No features.")
    assert len(features) == 0
    assert not features


def test_end_line_is_case_insensitive():
    features = FeatureCollection.parse("211-Features:\r\n UTF8\r\n211 End FEAT.")
    assert "UTF8" in features


def test_unexpected_first_line():
    with pytest.raises(FeatureParsingError):
        FeatureCollection.parse("500 FEAT not understood")


def test_unexpected_line_inside_reply():
    with pytest.raises(FeatureParsingError):
        FeatureCollection.parse("211-Features:\r\nUTF8\r\n211 End")
