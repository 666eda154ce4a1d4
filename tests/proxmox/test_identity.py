from namesync.proxmox.models import extract_uuid


def test_extract_uuid_only_token():
    assert extract_uuid("uuid=5f1b2c3d-0000-4000-8000-000000000001") == "5f1b2c3d-0000-4000-8000-000000000001"


def test_extract_uuid_any_position():
    assert extract_uuid("uuid=abc,manufacturer=qemu") == "abc"
    assert extract_uuid("manufacturer=qemu,uuid=abc,serial=xyz") == "abc"
    assert extract_uuid("manufacturer=qemu,serial=xyz,uuid=abc") == "abc"


def test_extract_uuid_first_match_wins():
    assert extract_uuid("uuid=first,uuid=second") == "first"


def test_extract_uuid_does_not_validate_value():
    assert extract_uuid("uuid=not-a-uuid") == "not-a-uuid"
    assert extract_uuid("uuid=") == ""


def test_extract_uuid_missing():
    assert extract_uuid("manufacturer=qemu,serial=xyz") is None
    assert extract_uuid("") is None
    assert extract_uuid(None) is None


def test_extract_uuid_splits_on_first_equals_of_token():
    assert extract_uuid("foo=uuid=x") == "uuid=x"
    assert extract_uuid("manufacturer=qemu,sku=uuid=x,uuid=y") == "uuid=x"
