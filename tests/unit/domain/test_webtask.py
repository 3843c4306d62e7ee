import pytest

from helpers import encode_token
from wtmigrate.core.exceptions import ValidationError
from wtmigrate.domain.models.common import module_key, validate_modules
from wtmigrate.domain.models.token import Token
from wtmigrate.domain.models.webtask import DEPENDENCIES_META_KEY, Webtask


def test_storage_data_is_serialized():
    webtask = Webtask("code", storage={"data": {"counter": 1}, "etag": "e1"})
    assert webtask.storage_data == '{"counter": 1}'
    assert webtask.storage_etag == "e1"

    webtask.set_storage_data(["a"])
    assert webtask.storage_data == '["a"]'


def test_empty_storage():
    webtask = Webtask("code")
    assert webtask.storage_data is None
    assert webtask.storage_etag is None


def test_dependencies_round_trip_through_meta():
    webtask = Webtask("code", meta={DEPENDENCIES_META_KEY: '{"lodash": "4.17.4"}'})
    assert webtask.dependencies == [{"name": "lodash", "version": "4.17.4"}]

    webtask.add_dependencies([{"name": "request", "version": "2.81.0"}])
    assert {m["name"] for m in webtask.dependencies} == {"lodash", "request"}

    webtask.remove_dependencies([{"name": "lodash", "version": "4.17.4"}])
    assert webtask.dependencies == [{"name": "request", "version": "2.81.0"}]


def test_malformed_dependency_meta_is_ignored():
    assert Webtask("code", meta={DEPENDENCIES_META_KEY: "{oops"}).dependencies == []


def test_token_derived_properties():
    token = Token(encode_token({
        "ten": "acme", "jtn": "hello", "dd": 0, "host": "hello.example.com",
        "url": "https://gist.example.com/raw/hello.js", "pctx": {"k": "v"},
    }))
    webtask = Webtask("", token=token)
    assert webtask.host == "hello.example.com"
    assert webtask.code_url == "https://gist.example.com/raw/hello.js"
    assert webtask.is_url_based
    assert webtask.claims == {"pctx": {"k": "v"}}


def test_inline_code_is_not_url_based():
    token = Token(encode_token({"ten": "acme", "dd": 0, "url": "webtask://localhost/hello"}))
    webtask = Webtask("module.exports = 1;", token=token)
    assert webtask.code_url is None
    assert not webtask.is_url_based
    assert Webtask("x").claims == {}


def test_hash_is_stable_and_content_sensitive():
    first = Webtask("code", meta={"a": "1", "b": "2"}, secrets={"s": "x"})
    second = Webtask("code", meta={"b": "2", "a": "1"}, secrets={"s": "x"})
    assert first.hash == second.hash
    assert len(first.hash) == 40
    assert Webtask("other", meta={"a": "1", "b": "2"}, secrets={"s": "x"}).hash != first.hash


def test_accessors_return_copies():
    webtask = Webtask("code", meta={"a": "1"})
    webtask.meta["a"] = "2"
    assert webtask.meta == {"a": "1"}


def test_invalid_arguments():
    with pytest.raises(ValidationError, match="code"):
        Webtask(None)
    with pytest.raises(ValidationError, match="token"):
        Webtask("code", token="raw")


@pytest.mark.parametrize("modules, message", [
    ("lodash", "modules(array) required"),
    (["lodash"], "module(object) required"),
    ([{"version": "1.0.0"}], "module.name(string) required"),
    ([{"name": "lodash", "version": 4}], "module.version(string) required"),
])
def test_validate_modules_messages(modules, message):
    with pytest.raises(ValidationError) as exc_info:
        validate_modules(modules)
    assert str(exc_info.value) == message


def test_module_key():
    assert module_key({"name": "lodash", "version": "4.17.4"}) == "lodash@4.17.4"
