import base64

import numpy as np
import pytest

from diagnostics import CLARIFY_PROMPT, NO_RATIONALE_REPLY, format_chat_reply
from errors import ConfigurationError, RequestError, ServiceError
from outcome import RATIONALE_WORKERS
from schemas import AnalyzeRequest, ChatRequest, LegacyRequest, UploadRequest
from vector_index import InMemoryVectorIndex

from conftest import (
    BlockingRationale,
    HangingEmbedder,
    HangingStore,
    KeywordEmbedder,
    RecordingStore,
    StaticRationale,
)

IMAGE_B64 = base64.b64encode(b"\xff\xd8\xff\xe0jpeg-bytes").decode()


def test_analyze_orange_peel_via_keyword_path(make_service):
    result = make_service().analyze(AnalyzeRequest(description="orange peel defect"))

    assert result["ok"] is True
    assert result["image_key"] is None
    assert result["best_match"] == {
        "code": "CD001-OP",
        "name": "Orange Peel",
        "severity": "Medium",
        "score": 2,
        "strategy": "keyword",
    }
    assert result["defect"]["code"] == "CD001-OP"
    assert result["defect"]["root_causes"][0] == "Lacquer viscosity above target range"
    assert result["rationale"] == ""


def test_analyze_stores_image(make_service):
    store = RecordingStore()
    service = make_service(object_store=store)

    result = service.analyze(AnalyzeRequest(
        description="orange peel defect",
        image_base64="data:image/jpeg;base64," + IMAGE_B64,
        filename="door panel.jpg",
    ))

    key = result["image_key"]
    assert key.startswith("uploads/")
    assert key.endswith("_door_panel.jpg")
    assert store.objects[key][0] == b"\xff\xd8\xff\xe0jpeg-bytes"


def test_analyze_with_malformed_image_still_succeeds(make_service):
    store = RecordingStore()
    result = make_service(object_store=store).analyze(AnalyzeRequest(
        description="orange peel defect", image_base64="%%% not base64 %%%"))

    assert result["ok"] is True
    assert result["image_key"] is None
    assert result["best_match"]["code"] == "CD001-OP"
    assert store.objects == {}


def test_analyze_survives_storage_failure(make_service):
    store = RecordingStore(error=IOError("bucket unreachable"))
    result = make_service(object_store=store).analyze(AnalyzeRequest(
        description="pinholes in the film", image_base64=IMAGE_B64))

    assert result["image_key"] is None
    assert result["defect"]["code"] == "CD003-PH"


def test_analyze_image_without_store_gives_null_key(make_service):
    result = make_service().analyze(AnalyzeRequest(
        description="pinholes in the film", image_base64=IMAGE_B64))
    assert result["image_key"] is None


def test_rationale_is_included(make_service):
    gen = StaticRationale("Most likely high viscosity.")
    result = make_service(rationale=gen).analyze(AnalyzeRequest(description="orange peel defect"))

    assert result["rationale"] == "Most likely high viscosity."
    assert gen.calls == [("orange peel defect", "CD001-OP", 2, "keyword")]


def test_rationale_failure_gives_empty_string(make_service):
    gen = StaticRationale(error=TimeoutError("llm timed out"))
    result = make_service(rationale=gen).analyze(AnalyzeRequest(description="orange peel defect"))

    assert result["ok"] is True
    assert result["rationale"] == ""


def test_chat_short_message_asks_for_detail(make_service, monkeypatch):
    service = make_service()

    def explode(*args, **kwargs):
        raise AssertionError("resolver must not be called")

    monkeypatch.setattr(service.resolver, "resolve_entry", explode)

    assert service.chat(ChatRequest(message="ab")) == {"reply": CLARIFY_PROMPT}
    assert service.chat(ChatRequest(message="   a  ")) == {"reply": CLARIFY_PROMPT}


def test_chat_reply_summarises_match(make_service):
    reply = make_service().chat(ChatRequest(message="orange peel on the hood"))["reply"]

    assert "CD001-OP - Orange Peel" in reply
    assert "Severity: Medium" in reply
    assert "Match score: 2" in reply
    assert reply.endswith(NO_RATIONALE_REPLY)


def test_chat_reply_uses_rationale(make_service):
    service = make_service(rationale=StaticRationale("Check the flow cup first."))
    reply = service.chat(ChatRequest(message="orange peel on the hood"))["reply"]
    assert reply.endswith("Check the flow cup first.")


def test_chat_reply_omits_missing_score():
    reply = format_chat_reply({
        "best_match": {"code": "CD001-OP", "name": "Orange Peel", "severity": "Medium",
                       "score": None, "strategy": "default"},
        "rationale": "",
    })
    assert "score" not in reply.lower()


def test_upload_requires_store(make_service):
    with pytest.raises(ConfigurationError):
        make_service().upload(UploadRequest(filename="a.png", data=IMAGE_B64))


def test_upload_rejects_bad_base64_without_writing(make_service):
    store = RecordingStore()
    with pytest.raises(RequestError):
        make_service(object_store=store).upload(UploadRequest(filename="a.png", data="@@@"))
    assert store.objects == {}


def test_upload_stores_under_clients(make_service):
    store = RecordingStore()
    result = make_service(object_store=store).upload(UploadRequest(
        filename="line 3/photo.png", contentType="image/png", data=IMAGE_B64))

    assert result == {"ok": True, "key": "clients/line_3_photo.png"}
    assert store.objects["clients/line_3_photo.png"][1] == "image/png"


def test_seed_without_index_does_not_embed(make_service):
    embedder = KeywordEmbedder()
    with pytest.raises(ConfigurationError) as exc:
        make_service(embedder=embedder, vector_index=None).seed()
    assert "not configured" in exc.value.message
    assert embedder.calls == []


def test_seed_is_idempotent(make_service, kb):
    index = InMemoryVectorIndex()
    service = make_service(embedder=KeywordEmbedder(), vector_index=index)

    first = service.seed()
    snapshot = {code: (index.get(code).vector.copy(), index.get(code).metadata)
                for code in (e.code for e in kb.all())}
    second = service.seed()

    assert first["ok"] and second["ok"]
    assert first["mutationId"] and second["mutationId"]
    assert len(index) == len(kb)
    for code, (vector, metadata) in snapshot.items():
        assert np.array_equal(index.get(code).vector, vector)
        assert index.get(code).metadata == metadata == kb.lookup(code).metadata()


def test_legacy_analyze(make_service):
    service = make_service()

    adhesion = service.legacy_analyze(LegacyRequest(defect="adhesion"))
    assert adhesion["priority"] == "process first, material second"
    assert len(adhesion["recommended_steps"]) == 4

    pinhole = service.legacy_analyze(LegacyRequest(defect="pinhole"))
    assert pinhole == {
        "defect": "pinhole",
        "priority": "viscosity first",
        "recommended_steps": [
            "Check lacquer viscosity first. Adjust to target viscosity range.",
            "Check for surface contamination or oiling of substrate.",
        ],
    }

    unknown = service.legacy_analyze(LegacyRequest(defect="sagging"))
    assert unknown == {"error": "Unknown defect type", "supported": ["adhesion", "pinhole"]}


def test_health(make_service):
    health = make_service().health()
    assert health["ok"] is True
    assert health["service"] == "coating-defect-diagnostics"
    assert health["kb_entries"] == 7
    assert health["backends"]["vector_index"] == "none"


def test_slow_rationale_does_not_block_vector_matching(make_service):
    rationale = BlockingRationale("never seen")
    service = make_service(embedder=KeywordEmbedder(), vector_index=InMemoryVectorIndex(),
                           rationale=rationale, rationale_timeout=0.05)
    service.seed()
    try:
        # every rationale worker is now stuck on an abandoned call
        for _ in range(RATIONALE_WORKERS + 2):
            result = service.analyze(AnalyzeRequest(description="orange peel defect"))
            assert result["rationale"] == ""

        candidate = service.resolver.resolve("crater and fish eye, silicone")
        assert candidate.strategy == "vector"
        assert candidate.code == "CD006-CR"
    finally:
        rationale.release.set()


def test_upload_times_out_on_hanging_store(make_service):
    store = HangingStore()
    service = make_service(object_store=store, external_timeout=0.05)
    try:
        with pytest.raises(ServiceError) as exc:
            service.upload(UploadRequest(filename="a.png", data=IMAGE_B64))
        assert "timed out" in exc.value.message
        assert exc.value.status == 500
        assert store.objects == {}
    finally:
        store.release.set()


def test_upload_store_failure_is_a_service_error(make_service):
    store = RecordingStore(error=RuntimeError("bucket gone"))
    with pytest.raises(ServiceError) as exc:
        make_service(object_store=store).upload(UploadRequest(filename="a.png", data=IMAGE_B64))
    assert "bucket gone" in exc.value.message


def test_seed_times_out_on_hanging_embedder(make_service):
    embedder = HangingEmbedder()
    index = InMemoryVectorIndex()
    service = make_service(embedder=embedder, vector_index=index, external_timeout=0.05)
    try:
        with pytest.raises(ServiceError) as exc:
            service.seed()
        assert "timed out" in exc.value.message
        assert len(index) == 0
    finally:
        embedder.release.set()
