import json
import unittest

import httpx

from lawnet.client.api import AccessApiClient, ClientError, RetryableClientError


class TestAccessApiClient(unittest.IsolatedAsyncioTestCase):
    def make(self, handler):
        self.requests = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(record), base_url="http://lawnet.test")
        api = AccessApiClient("http://lawnet.test", " Reader@Example.com ", client=http)
        self.addAsyncCleanup(api.close)
        return api

    async def test_check_access_parses_grant(self):
        api = self.make(lambda request: httpx.Response(200, json={
            "allowed": True, "expires_at": "2026-03-01T13:00:00Z", "message": "hi",
        }))
        remote = await api.check_access("video", "v1")
        self.assertTrue(remote.allowed)
        self.assertEqual(remote.expires_at.isoformat(), "2026-03-01T13:00:00+00:00")
        self.assertEqual(self.requests[0].url.params["email"], "reader@example.com")

    async def test_my_submission_found(self):
        item = {"id": "s1", "status": "pending"}
        api = self.make(lambda request: httpx.Response(200, json={"found": True, "item": item}))
        self.assertEqual(await api.my_submission("video", "v1"), item)
        request = self.requests[0]
        self.assertEqual(request.url.path, "/api/submissions/my")
        self.assertEqual(dict(request.url.params), {"email": "reader@example.com", "feature": "video", "feature_id": "v1"})

    async def test_my_submission_not_found(self):
        api = self.make(lambda request: httpx.Response(200, json={"found": False}))
        self.assertIsNone(await api.my_submission())
        self.assertEqual(dict(self.requests[0].url.params), {"email": "reader@example.com"})

    async def test_submit_proof_sends_form_and_idempotency_key(self):
        api = self.make(lambda request: httpx.Response(200, json={"id": "s1", "status": "pending"}))
        created = await api.submit_proof(
            "playlist", "pl-1", "weekly",
            proof_ref="https://cdn.example.com/p.png",
            name="Asha",
            idempotency_key="tap-1",
        )
        self.assertEqual(created["id"], "s1")
        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/api/submissions")
        self.assertEqual(request.headers["Idempotency-Key"], "tap-1")
        body = request.content.decode()
        self.assertIn("email=reader%40example.com", body)
        self.assertIn("plan_key=weekly", body)
        self.assertIn("name=Asha", body)

    async def test_submit_proof_uploads_screenshot(self):
        api = self.make(lambda request: httpx.Response(200, json={"id": "s2"}))
        await api.submit_proof("video", "v1", "monthly", screenshot=("pay.png", b"\x89PNG fake"))
        request = self.requests[0]
        self.assertTrue(request.headers["content-type"].startswith("multipart/form-data"))
        self.assertNotIn("Idempotency-Key", request.headers)
        body = request.read()
        self.assertIn(b'filename="pay.png"', body)
        self.assertIn(b"\x89PNG fake", body)

    async def test_rejected_request_raises_client_error(self):
        payload = {"ok": False, "error": "payment proof required", "code": "validation_error"}
        api = self.make(lambda request: httpx.Response(400, content=json.dumps(payload)))
        with self.assertRaises(ClientError) as ctx:
            await api.submit_proof("video", "v1", "weekly")
        self.assertNotIsInstance(ctx.exception, RetryableClientError)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.code, "validation_error")
        self.assertEqual(ctx.exception.message, "payment proof required")

    async def test_server_error_is_retryable(self):
        api = self.make(lambda request: httpx.Response(503, json={"error": "store unavailable"}))
        with self.assertRaises(RetryableClientError) as ctx:
            await api.my_submission()
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_transport_failure_is_retryable(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        api = self.make(refuse)
        with self.assertRaises(RetryableClientError):
            await api.check_access("video", "v1")
