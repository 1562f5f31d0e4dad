from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from ai_brain.errors import MalformedOracleResponse
from ai_brain.services.oracles import (
    EmbeddingOracle,
    OracleStatus,
    TextOracle,
    _parse_json_from_text,
    analyze_emotion,
    coerce_emotions,
)
from tests.fixtures.oracle_stubs import StubTextOracle


def _chat_client(*contents):
    client = MagicMock()
    client.chat.completions.create.side_effect = [
        SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=c))]) for c in contents
    ]
    return client


def test_parse_json_handles_fences_and_prose():
    assert _parse_json_from_text('```json\n{"joy": 0.5}\n```', False) == {"joy": 0.5}
    assert _parse_json_from_text('Sure! {"summary": "x"} hope that helps', False) == {"summary": "x"}
    assert _parse_json_from_text('Here: [{"goal": "a"}] done', True) == [{"goal": "a"}]


def test_parse_json_coerces_objects_when_array_expected():
    assert _parse_json_from_text('{"beliefs": [{"belief": "a"}]}', True) == [{"belief": "a"}]
    assert _parse_json_from_text('{"goal": "a"}', True) == [{"goal": "a"}]
    assert _parse_json_from_text("{}", True) == []
    assert _parse_json_from_text('note {"goal": "a"} end', True) == [{"goal": "a"}]


@pytest.mark.parametrize("text", ["", "   ", "no json at all", "42"])
def test_parse_json_rejects_unusable_text(text):
    with pytest.raises(MalformedOracleResponse):
        _parse_json_from_text(text, True)


def test_text_oracle_returns_ok_for_valid_json():
    client = _chat_client('{"summary": "fine"}')
    oracle = TextOracle(client, model="test-model", timeout_s=1.0, retries=0)

    result = oracle.analyze("system", {"a": 1})

    assert result.status is OracleStatus.OK
    assert result.value == {"summary": "fine"}
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][1]["content"] == '{"a": 1}'


def test_text_oracle_degrades_on_malformed_answer():
    oracle = TextOracle(_chat_client("I cannot help with that", "nope"), model="m", timeout_s=1.0, retries=0)

    obj = oracle.analyze("system", "text")
    arr = oracle.analyze("system", "text", expect_array=True)

    assert obj.status is OracleStatus.DEGRADED and obj.value == {}
    assert arr.status is OracleStatus.DEGRADED and arr.value == []
    assert obj.usable and not obj.ok


def test_text_oracle_retries_then_fails():
    client = MagicMock()
    client.chat.completions.create.side_effect = TimeoutError("slow")
    oracle = TextOracle(client, model="m", timeout_s=0.1, retries=2)

    result = oracle.analyze("system", "text", expect_array=True)

    assert result.status is OracleStatus.FAILED
    assert "slow" in result.error
    assert client.chat.completions.create.call_count == 3
    assert client.chat.completions.create.call_args.kwargs["response_format"] is None


def test_text_oracle_without_client_fails(monkeypatch):
    monkeypatch.setattr("ai_brain.services.oracles._build_client", lambda: None)
    result = TextOracle(model="m", timeout_s=1.0, retries=0).analyze("system", "text")
    assert result.status is OracleStatus.FAILED
    assert not result.usable


def test_embedding_oracle_success_and_failure():
    client = MagicMock()
    client.embeddings.create.return_value = SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2])])
    ok = EmbeddingOracle(client, model="emb", timeout_s=1.0, retries=0).embed("hello")
    assert ok.ok and ok.value == [0.1, 0.2]

    client.embeddings.create.side_effect = ConnectionError("down")
    failed = EmbeddingOracle(client, model="emb", timeout_s=1.0, retries=1).embed("hello")
    assert failed.status is OracleStatus.FAILED
    assert client.embeddings.create.call_count == 3


def test_coerce_emotions():
    assert coerce_emotions({"joy": 2, "fear": -0.5, "boredom": 1})["joy"] == 1.0
    assert coerce_emotions({"joy": 2, "fear": -0.5})["fear"] == 0.0
    assert coerce_emotions({"boredom": 1}) is None
    assert coerce_emotions({"joy": "lots"}) is None
    assert coerce_emotions(["joy"]) is None


def test_analyze_emotion_always_yields_a_full_map():
    neutral = analyze_emotion(None, "hi")
    assert neutral.status is OracleStatus.DEGRADED
    assert neutral.value == {"joy": 0.0, "sadness": 0.0, "anger": 0.0, "fear": 0.0, "surprise": 0.0}

    malformed = analyze_emotion(StubTextOracle(emotion={"boredom": 1}), "hi")
    assert malformed.status is OracleStatus.DEGRADED

    ok = analyze_emotion(StubTextOracle(emotion={"fear": 0.8}), "hi")
    assert ok.ok and ok.value["fear"] == 0.8 and len(ok.value) == 5
