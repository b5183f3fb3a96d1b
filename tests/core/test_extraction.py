import pytest
from txflow.core.extraction import (
    extract_status,
    extract_result_url,
    extract_error_message,
    nested_status,
    top_level_status,
    well_known_file_url,
    scan_file_url,
    normalize_url,
    DEFAULT_FAILURE_MESSAGE,
)
from txflow.core.state_machine import JOB_PENDING, JOB_COMPLETED, JOB_FAILED

def test_nested_status_preferred_over_top_level():
    payload = {"status": "pending", "result": {"status": "completed"}}
    assert nested_status(payload) == "completed"
    assert top_level_status(payload) == "pending"
    assert extract_status(payload) == JOB_COMPLETED

def test_top_level_status_used_when_nested_missing():
    assert extract_status({"status": "failed", "result": {}}) == JOB_FAILED
    assert extract_status({"status": "failed", "result": "oops"}) == JOB_FAILED

@pytest.mark.parametrize("payload", [
    {},
    {"result": None},
    {"status": ""},
    {"status": 42},
    {"status": "processing"},
    None,
    ["completed"],
])
def test_missing_or_unknown_status_is_pending(payload):
    assert extract_status(payload) == JOB_PENDING

def test_status_is_case_insensitive():
    assert extract_status({"status": " Completed "}) == JOB_COMPLETED

def test_well_known_url_location():
    payload = {"result": {"uploadFileEcontractS3": {"unsigned_file": {"file_url": "https://x/f.pdf"}}}}
    assert well_known_file_url(payload) == "https://x/f.pdf"
    assert extract_result_url(payload) == "https://x/f.pdf"

def test_scan_finds_first_file_url_anywhere():
    payload = {"result": {"status": "completed", "files": [{"name": "a"}, {"meta": {"file_url": "https://x/deep.pdf"}}]}}
    assert well_known_file_url(payload) is None
    assert scan_file_url(payload) == "https://x/deep.pdf"
    assert extract_result_url(payload) == "https://x/deep.pdf"

def test_scan_key_must_match_exactly():
    payload = {"result": {"File_Url": "https://x/a.pdf", "fileUrl": "https://x/b.pdf", "file_url": 12}}
    assert scan_file_url(payload) is None
    assert extract_result_url(payload) is None

def test_url_whitespace_is_encoded():
    assert normalize_url("https://x/my contract.pdf") == "https://x/my%20contract.pdf"
    payload = {"file_url": "https://x/my contract.pdf"}
    assert extract_result_url(payload) == "https://x/my%20contract.pdf"

def test_error_message_prefers_nested():
    assert extract_error_message({"message": "top", "result": {"message": "nested"}}) == "nested"
    assert extract_error_message({"status": "failed", "message": "quota exceeded"}) == "quota exceeded"
    assert extract_error_message({"status": "failed"}) == DEFAULT_FAILURE_MESSAGE
