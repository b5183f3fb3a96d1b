from txflow.api.normalize import unwrap_envelope


def test_full_envelope():
    assert unwrap_envelope({"success": True, "message": "ok", "data": {"a": 1}, "code": 200}) == (True, "ok", {"a": 1})

def test_data_only_envelope():
    assert unwrap_envelope({"data": {"a": 1}}) == (True, "", {"a": 1})

def test_bare_payload_with_data_field_is_not_unwrapped():
    body = {"status": "completed", "data": {"x": 1}}
    assert unwrap_envelope(body) == (True, "", body)

def test_declined_envelope():
    ok, message, data = unwrap_envelope({"success": False, "message": "Wrong OTP", "data": None})
    assert ok is False
    assert message == "Wrong OTP"
    assert data == {}

def test_scalar_data_is_wrapped():
    assert unwrap_envelope({"success": True, "data": True}) == (True, "", {"value": True})

def test_non_dict_body():
    assert unwrap_envelope(["a"]) == (True, "", {})
    assert unwrap_envelope(None) == (True, "", {})
