import unittest

import aiohttp

from agent_fakes import multipart_body
from locations_offline.agent.form_codec import build_form_data, decode_fields, encode_fields, parse_form_body
from locations_offline.agent.models import FormField

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\r\n--not-a-boundary\r\n\xff\xd9"


class ParseFormBodyTests(unittest.IsolatedAsyncioTestCase):
    async def test_multipart_fields_keep_order_and_bytes(self) -> None:
        boundary = "----agentboundary7MA4YWxkTrZu0gW"
        body = multipart_body(
            boundary,
            [
                ("placeId", None, None, b"ChIJ123"),
                ("photo", "door.jpg", "image/jpeg", JPEG_BYTES),
                ("caption", None, None, "Side entrance – ramp".encode("utf-8")),
            ],
        )

        fields = await parse_form_body(body, f"multipart/form-data; boundary={boundary}")

        self.assertEqual(
            fields,
            [
                FormField(name="placeId", kind="text", value="ChIJ123"),
                FormField(name="photo", kind="file", value=JPEG_BYTES, filename="door.jpg", content_type="image/jpeg"),
                FormField(name="caption", kind="text", value="Side entrance – ramp"),
            ],
        )

    async def test_urlencoded_body(self) -> None:
        fields = await parse_form_body(b"placeId=p1&caption=&caption=two", "application/x-www-form-urlencoded")
        self.assertEqual([(f.name, f.value) for f in fields], [("placeId", "p1"), ("caption", ""), ("caption", "two")])

    async def test_unsupported_content_type_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await parse_form_body(b"{}", "application/json")

    async def test_multipart_without_matching_boundary_is_rejected(self) -> None:
        body = multipart_body("real-boundary", [("placeId", None, None, b"p1")])
        with self.assertRaises(ValueError):
            await parse_form_body(body, "multipart/form-data; boundary=other-boundary")

    async def test_file_part_keeps_utf8_filename_and_defaults_content_type(self) -> None:
        boundary = "b"
        body = multipart_body(boundary, [("photo", "café.jpg", None, b"JPEG")])

        fields = await parse_form_body(body, f"multipart/form-data; boundary={boundary}")

        self.assertEqual(fields[0].filename, "café.jpg")
        self.assertEqual(fields[0].content_type, "application/octet-stream")
        self.assertEqual(fields[0].value, b"JPEG")


class FieldEncodingTests(unittest.TestCase):
    def test_encoded_payload_is_json_safe_and_decodes_to_same_fields(self) -> None:
        fields = [
            FormField(name="photo", kind="file", value=JPEG_BYTES, filename="a.jpg", content_type="image/jpeg"),
            FormField(name="placeId", kind="text", value="p1"),
        ]
        encoded = encode_fields(fields)

        self.assertEqual(encoded[0]["kind"], "file")
        self.assertIsInstance(encoded[0]["value"], str)
        self.assertEqual(decode_fields(encoded), fields)

    def test_unknown_kind_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            decode_fields([{"name": "x", "kind": "blob", "value": ""}])

    def test_build_form_data_is_multipart_even_without_files(self) -> None:
        form = build_form_data([FormField(name="placeId", kind="text", value="p1")])
        self.assertIsInstance(form, aiohttp.FormData)
        self.assertTrue(form.is_multipart)


if __name__ == "__main__":
    unittest.main()
