import tempfile
import unittest
from pathlib import Path

from agent_fakes import UPSTREAM, FakeTransport, RecordingClient, make_config, multipart_body
from locations_offline.agent.agent import OfflineAgent
from locations_offline.agent.models import FormField, InterceptedRequest, NewUpload
from locations_offline.agent.notifier import ClientNotifier

FIELDS = [
    FormField(name="placeId", kind="text", value="ChIJ123"),
    FormField(name="caption", kind="text", value="Loading dock"),
    FormField(name="photo", kind="file", value=b"\xff\xd8\x00\xff\xd9", filename="dock.jpg", content_type="image/jpeg"),
]


def _upload() -> NewUpload:
    return NewUpload(
        url=f"{UPSTREAM}/api/photos/upload",
        method="POST",
        fields=list(FIELDS),
        headers={"Authorization": "Bearer t", "Content-Type": "multipart/form-data; boundary=old"},
    )


class BackgroundSyncTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.transport = FakeTransport()
        self.agent = self._agent()
        self.client = RecordingClient()
        self.agent.notifier.register(self.client)

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    def _agent(self, max_attempts: int = 10) -> OfflineAgent:
        return OfflineAgent(make_config(self.tmp, max_attempts=max_attempts), transport=self.transport)

    async def test_successful_replay_removes_job_and_notifies_once(self) -> None:
        job = await self.agent.queue_store.enqueue(_upload())

        report = await self.agent.handle_sync("photo-upload-sync")

        self.assertEqual((report.attempted, report.completed), (1, 1))
        self.assertIsNone(await self.agent.queue_store.get(job.id))
        self.assertEqual(self.client.messages, [{"type": "UPLOAD_COMPLETED", "uploadId": job.id, "success": True}])

    async def test_replayed_form_matches_stored_fields(self) -> None:
        await self.agent.queue_store.enqueue(_upload())
        await self.agent.handle_sync()

        self.assertEqual(len(self.transport.sent_forms), 1)
        sent = self.transport.sent_forms[0]
        self.assertEqual([(f.name, f.value) for f in sent.fields], [(f.name, f.value) for f in FIELDS])
        self.assertEqual(sent.fields, FIELDS)
        self.assertEqual((sent.method, sent.url), ("POST", f"{UPSTREAM}/api/photos/upload"))
        self.assertEqual(sent.headers["Authorization"], "Bearer t")

    async def test_failed_replay_keeps_job_queued_and_continues(self) -> None:
        first = await self.agent.queue_store.enqueue(_upload())
        second = await self.agent.queue_store.enqueue(_upload())
        self.transport.upload_status = 503

        report = await self.agent.handle_sync()

        self.assertEqual((report.attempted, report.failed, report.completed), (2, 2, 0))
        self.assertFalse(report.drained)
        for job_id in (first.id, second.id):
            stored = await self.agent.queue_store.get(job_id)
            self.assertEqual((stored.status, stored.attempts, stored.last_error), ("queued", 1, "status=503"))
        self.assertEqual(self.client.messages, [])

    async def test_network_failure_during_replay_keeps_job(self) -> None:
        job = await self.agent.queue_store.enqueue(_upload())
        self.transport.online = False

        report = await self.agent.handle_sync()

        self.assertEqual(report.failed, 1)
        self.assertEqual((await self.agent.queue_store.get(job.id)).last_error, "offline")

    async def test_job_is_parked_after_max_attempts(self) -> None:
        agent = self._agent(max_attempts=2)
        agent.notifier.register(self.client)
        job = await agent.queue_store.enqueue(_upload())
        self.transport.upload_status = 400

        await agent.handle_sync()
        report = await agent.handle_sync()

        self.assertEqual(report.dead_lettered, 1)
        parked = await agent.queue_store.get(job.id)
        self.assertEqual((parked.status, parked.attempts), ("failed", 2))
        self.assertEqual(self.client.messages[-1]["type"], "UPLOAD_FAILED")

        third = await agent.handle_sync()
        self.assertEqual(third.attempted, 0)

    async def test_unknown_tag_is_ignored(self) -> None:
        await self.agent.queue_store.enqueue(_upload())
        report = await self.agent.handle_sync("location-data-sync")
        self.assertEqual(report.attempted, 0)
        self.assertEqual(await self.agent.queue_store.count(), 1)

    async def test_upload_then_sync_scenario(self) -> None:
        boundary = "b0undary"
        body = multipart_body(boundary, [("placeId", None, None, b"p9"), ("photo", "x.jpg", "image/jpeg", b"JPEG")])
        self.transport.online = False
        response = await self.agent.handle_fetch(
            InterceptedRequest(
                method="POST",
                url=f"{UPSTREAM}/api/photos/upload",
                headers={"Content-Type": f"multipart/form-data; boundary={boundary}"},
                body=body,
            )
        )
        self.assertEqual(response.status, 202)
        self.assertEqual(await self.agent.queue_store.count(), 1)

        self.transport.online = True
        reports = await self.agent.scheduler.tick()

        self.assertEqual(len(reports), 1)
        self.assertEqual(await self.agent.queue_store.count(), 0)
        self.assertEqual(self.agent.sync_agent.pending_tags, frozenset())
        self.assertEqual(len(self.client.messages), 1)
        self.assertEqual(self.transport.sent_forms[0].fields[0].value, "p9")

    async def test_upload_queued_during_a_run_keeps_the_registration(self) -> None:
        await self.agent.queue_store.enqueue(_upload())
        await self.agent.sync_agent.register()
        queued_mid_run = []
        send_form = self.transport.send_form

        async def _send_while_another_upload_fails(**kwargs):
            if not queued_mid_run:
                queued_mid_run.append(await self.agent.queue_store.enqueue(_upload()))
                await self.agent.sync_agent.register()
            return await send_form(**kwargs)

        self.transport.send_form = _send_while_another_upload_fails

        first = await self.agent.scheduler.tick()

        self.assertEqual((first[0].attempted, first[0].completed), (1, 1))
        self.assertFalse(first[0].drained)
        self.assertEqual(await self.agent.queue_store.count(), 1)
        self.assertIn("photo-upload-sync", self.agent.sync_agent.pending_tags)

        second = await self.agent.scheduler.tick()

        self.assertEqual(len(second), 1)
        self.assertTrue(second[0].drained)
        self.assertIsNone(await self.agent.queue_store.get(queued_mid_run[0].id))
        self.assertEqual(await self.agent.queue_store.count(), 0)
        self.assertEqual(self.agent.sync_agent.pending_tags, frozenset())

    async def test_scheduler_waits_for_connectivity(self) -> None:
        await self.agent.queue_store.enqueue(_upload())
        await self.agent.sync_agent.register()
        self.transport.online = False

        self.assertEqual(await self.agent.scheduler.tick(), [])
        self.assertEqual(self.transport.probes, 1)
        self.assertIn("photo-upload-sync", self.agent.sync_agent.pending_tags)

    async def test_scheduler_does_nothing_without_registration(self) -> None:
        self.assertEqual(await self.agent.scheduler.tick(), [])
        self.assertEqual(self.transport.probes, 0)

    async def test_start_registers_sync_for_leftover_jobs(self) -> None:
        await self.agent.queue_store.enqueue(_upload())
        restarted = self._agent()
        try:
            await restarted.start()
            self.assertIn("photo-upload-sync", restarted.sync_agent.pending_tags)
        finally:
            await restarted.stop()


class ClientNotifierTests(unittest.IsolatedAsyncioTestCase):
    async def test_broadcast_reaches_all_clients_and_drops_broken_ones(self) -> None:
        notifier = ClientNotifier()
        good, broken = RecordingClient(), RecordingClient(broken=True)
        notifier.register(good)
        notifier.register(broken)

        delivered = await notifier.broadcast("UPLOAD_COMPLETED", uploadId=7, success=True)

        self.assertEqual(delivered, 1)
        self.assertEqual(good.messages, [{"type": "UPLOAD_COMPLETED", "uploadId": 7, "success": True}])
        self.assertEqual(notifier.client_count, 1)


if __name__ == "__main__":
    unittest.main()
