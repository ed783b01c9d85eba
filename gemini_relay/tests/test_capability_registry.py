import pytest

from gemini_relay.domain.exceptions import CapabilityError
from gemini_relay.tools.definitions import CapabilityContext, CapabilityDeclaration
from gemini_relay.tools.registry import Capability, CapabilityRegistry, default_capabilities


def _decl(name):
    return CapabilityDeclaration(name=name, description=name)


class SettingsStub:
    http_timeout = 1.0
    weather_base_url = "https://weather.example"
    google_search_api_key = None
    google_search_engine_id = None
    search_base_url = "https://search.example"
    search_max_results = 5
    cloudinary_cloud_name = None
    cloudinary_api_key = None
    cloudinary_api_secret = None
    cloudinary_default_folder = "gemini-uploads"


def test_default_capabilities_are_declared():
    registry = default_capabilities(SettingsStub())
    names = [d.name for d in registry.list_declarations()]
    assert names == ["getCurrentWeather", "performWebSearch", "uploadImageToCloudinary", "listImagesInCloudinary"]
    assert "performWebSearch" in registry


def test_duplicate_names_rejected():
    with pytest.raises(ValueError):
        CapabilityRegistry([Capability(_decl("a"), lambda a, c: {}), Capability(_decl("a"), lambda a, c: {})])


def test_unknown_capability_returns_error():
    registry = CapabilityRegistry([])
    assert registry.invoke("nope", {}) == {"error": "capability nope not recognized"}


def test_capability_error_becomes_result():
    def broken(args, context):
        raise CapabilityError("upstream is down")

    registry = CapabilityRegistry([Capability(_decl("b"), broken)])
    assert registry.invoke("b") == {"error": "upstream is down"}


def test_unexpected_exception_becomes_result():
    def crash(args, context):
        raise RuntimeError("kaboom")

    registry = CapabilityRegistry([Capability(_decl("c"), crash)])
    assert registry.invoke("c") == {"error": "c failed: kaboom"}


def test_non_mapping_result_is_wrapped():
    registry = CapabilityRegistry([Capability(_decl("d"), lambda a, c: [1, 2])])
    assert registry.invoke("d") == {"result": [1, 2]}


def test_context_and_arguments_are_passed():
    seen = {}

    def grab(args, context):
        seen["args"] = args
        seen["context"] = context
        return {"ok": True}

    registry = CapabilityRegistry([Capability(_decl("e"), grab)])
    ctx = CapabilityContext(conversation_id="42")
    registry.invoke("e", {"x": 1}, ctx)
    assert seen == {"args": {"x": 1}, "context": ctx}


def test_unconfigured_capabilities_report_errors():
    registry = default_capabilities(SettingsStub())
    assert registry.invoke("performWebSearch", {"query": "news"}) == {
        "error": "Web search is not configured on the server."
    }
    assert registry.invoke("listImagesInCloudinary", {}) == {"error": "Cloudinary is not configured on the server."}
