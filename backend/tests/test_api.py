import json
import os
import unittest

os.environ.setdefault("EMBEDDING_BACKEND", "offline")
os.environ.setdefault("GENERATION_BACKEND", "offline")
os.environ.setdefault("PROVIDER_RATE_LIMIT", "10000")

from fastapi.testclient import TestClient

from ragbuilder_backend.api import create_app
from ragbuilder_backend.config import get_settings
from ragbuilder_backend.metrics import monitor
from ragbuilder_backend.orchestrator import PipelineService
from ragbuilder_backend.providers import reset_rate_limiters

CONFIGURATION = {
    "name": "API pipeline",
    "stages": {
        "chunking": {"strategy": "document", "chunkSize": 600, "chunkOverlap": 0},
        "embedding": {"provider": "openai", "model": "text-embedding-3-small"},
        "retrieval": {"topK": 2},
        "generation": {"provider": "openai", "model": "gpt-4o-mini", "maxTokens": 200},
    },
}

DOCUMENT = (
    "# Chunking\nChunking splits documents into retrievable pieces.\n"
    "# Embeddings\nEmbeddings turn each chunk into a vector.\n"
    "# Retrieval\nRetrieval ranks chunks by cosine similarity."
)


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()
        reset_rate_limiters()
        self.client = TestClient(create_app(PipelineService()))

    def _create(self) -> str:
        response = self.client.post("/v1/pipelines", json={"configuration": CONFIGURATION})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["data"]["pipelineId"]

    def _ingest(self, pipeline_id: str) -> dict:
        response = self.client.post(
            f"/v1/pipelines/{pipeline_id}/ingest",
            json={"documents": [{"id": "guide", "name": "guide.md", "content": DOCUMENT}]},
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["data"]

    def test_health_endpoint(self) -> None:
        response = self.client.get("/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")

    def test_ingest_then_stream_query(self) -> None:
        pipeline_id = self._create()
        data = self._ingest(pipeline_id)
        self.assertEqual(data["documentsProcessed"], 1)
        self.assertEqual(data["chunksCreated"], 3)
        self.assertTrue(data["status"]["isReady"])

        response = self.client.post(f"/v1/pipelines/{pipeline_id}/query", json={"question": "What is retrieval?"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("application/x-ndjson"))
        events = [json.loads(line) for line in response.text.splitlines() if line.strip()]
        self.assertEqual(events[-1], {"type": "complete"})
        self.assertTrue(all(event["type"] == "chunk" for event in events[:-1]))
        self.assertTrue("".join(event["data"] for event in events[:-1]))

    def test_query_before_ingest_conflicts(self) -> None:
        pipeline_id = self._create()
        response = self.client.post(f"/v1/pipelines/{pipeline_id}/query", json={"question": "Too early?"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "Pipeline not ready. Please ingest documents first.")

    def test_invalid_configuration(self) -> None:
        configuration = json.loads(json.dumps(CONFIGURATION))
        configuration["stages"]["chunking"]["chunkOverlap"] = 600
        response = self.client.post("/v1/pipelines", json={"configuration": configuration})
        self.assertEqual(response.status_code, 400)
        self.assertIn("Chunk overlap must be less than chunk size", response.json()["details"])

    def test_unknown_pipeline(self) -> None:
        self.assertEqual(self.client.get("/v1/pipelines/nope").status_code, 404)
        self.assertEqual(self.client.delete("/v1/pipelines/nope").status_code, 404)

    def test_list_get_and_delete(self) -> None:
        pipeline_id = self._create()
        listing = self.client.get("/v1/pipelines").json()["data"]
        self.assertEqual([item["id"] for item in listing], [pipeline_id])

        detail = self.client.get(f"/v1/pipelines/{pipeline_id}").json()["data"]
        self.assertEqual(detail["chunking"]["strategy"], "document")
        self.assertEqual(detail["status"]["state"], "created")

        self.assertEqual(self.client.delete(f"/v1/pipelines/{pipeline_id}").status_code, 200)
        self.assertEqual(self.client.get(f"/v1/pipelines/{pipeline_id}/status").status_code, 404)

    def test_evaluate_endpoint(self) -> None:
        pipeline_id = self._create()
        self._ingest(pipeline_id)
        response = self.client.post(
            f"/v1/pipelines/{pipeline_id}/evaluate", json={"testQuestions": ["How are chunks ranked?"]}
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertIn("question_coverage", response.json()["data"]["averages"])

    def test_chunking_preview(self) -> None:
        response = self.client.post(
            "/v1/chunking/preview",
            json={
                "text": "# Title\nPara one.\nPara two.\n\n# Section 2\nMore text.",
                "chunking": {"strategy": "document", "chunkSize": 1000, "chunkOverlap": 0},
            },
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["stats"]["totalChunks"], 2)
        self.assertEqual(
            [chunk["metadata"]["fields"]["boundary_reason"] for chunk in data["chunks"]],
            ["headerBoundary", "finalChunk"],
        )
        self.assertTrue(data["compatibility"]["isCompatible"])

    def test_chunking_preview_reports_invalid_config(self) -> None:
        response = self.client.post(
            "/v1/chunking/preview",
            json={"text": "anything", "chunking": {"strategy": "fixed", "chunkSize": 100, "chunkOverlap": 100}},
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["chunks"], [])
        self.assertIn("Chunk overlap must be less than chunk size", data["validation"]["errors"])

    def test_latency_metrics_endpoint(self) -> None:
        monitor.reset()
        self._ingest(self._create())
        payload = self.client.get("/metrics/latency").json()
        self.assertIn("ingest", payload["latency"])
        self.assertEqual(payload["latency"]["ingest"]["count"], 1)
        self.assertIn("events", payload)


if __name__ == "__main__":
    unittest.main()
