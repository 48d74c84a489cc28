import base64
import tempfile
import unittest
from pathlib import Path

from pydantic import ValidationError

from inference_gateway.multimodal import (
    data_url,
    encode_chat_content,
    encode_responses_message,
    mime_for_filename,
)
from inference_gateway.types import Attachment, Turn


class MimeTests(unittest.TestCase):
    def test_known_extensions(self) -> None:
        self.assertEqual(mime_for_filename("a.PDF"), "application/pdf")
        self.assertEqual(mime_for_filename("notes.md"), "text/markdown")
        self.assertEqual(mime_for_filename("pic.jpeg"), "image/jpeg")
        self.assertEqual(mime_for_filename("x.docx").split("/")[0], "application")

    def test_unknown_extension_falls_back(self) -> None:
        self.assertEqual(mime_for_filename("archive.tar.zst"), "application/octet-stream")
        self.assertEqual(mime_for_filename("README"), "application/octet-stream")

    def test_attachment_mime_is_derived(self) -> None:
        self.assertEqual(Attachment(kind="document", filename="data.csv", data=b"a,b").mime, "text/csv")


class AttachmentTests(unittest.TestCase):
    def test_requires_exactly_one_source(self) -> None:
        with self.assertRaises(ValidationError):
            Attachment(kind="image", filename="a.png")
        with self.assertRaises(ValidationError):
            Attachment(kind="image", filename="a.png", data=b"x", path=Path("a.png"))

    def test_path_attachment_reads_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "doc.txt"
            path.write_bytes(b"hello")
            attachment = Attachment(kind="document", filename="doc.txt", path=path)
            self.assertEqual(attachment.size_bytes, 5)
            self.assertEqual(data_url(attachment), "data:text/plain;base64," + base64.b64encode(b"hello").decode())

    def test_unvalidated_attachment_without_source(self) -> None:
        attachment = Attachment.model_construct(kind="image", filename="a.png", data=None, path=None)
        with self.assertRaises(ValueError):
            attachment.read_bytes()
        with self.assertRaises(ValueError):
            attachment.size_bytes


class EncodeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.image = Attachment(kind="image", filename="cat.png", data=b"\x89PNG")
        self.document = Attachment(kind="document", filename="paper.pdf", data=b"%PDF")

    def test_text_only_turn_stays_string(self) -> None:
        self.assertEqual(encode_chat_content(Turn(role="user", text="hi")), "hi")
        self.assertEqual(encode_responses_message(Turn(role="user", text="hi")), {"role": "user", "content": "hi"})

    def test_chat_parts_keep_order(self) -> None:
        turn = Turn(role="user", text="look", attachments=[self.image, self.document])
        parts = encode_chat_content(turn)
        self.assertEqual([p["type"] for p in parts], ["text", "image_url", "file"])
        self.assertTrue(parts[1]["image_url"]["url"].startswith("data:image/png;base64,"))
        self.assertEqual(parts[1]["image_url"]["detail"], "auto")
        self.assertEqual(parts[2]["file"]["filename"], "paper.pdf")
        self.assertTrue(parts[2]["file"]["file_data"].startswith("data:application/pdf;base64,"))

    def test_image_with_unknown_extension_uses_jpeg(self) -> None:
        image = Attachment(kind="image", filename="camera.heic", data=b"\x00")
        self.assertTrue(data_url(image).startswith("data:image/jpeg;base64,"))

    def test_responses_message_shape(self) -> None:
        turn = Turn(role="system", text="be brief", attachments=[self.image, self.document])
        message = encode_responses_message(turn, role="developer")
        self.assertEqual(message["role"], "developer")
        self.assertEqual(
            [part["type"] for part in message["content"]],
            ["input_text", "input_image", "input_file"],
        )
        self.assertEqual(message["content"][0]["text"], "be brief")
        self.assertEqual(message["content"][2]["filename"], "paper.pdf")


if __name__ == "__main__":
    unittest.main()
