"""
Unit tests for media format handling

Tests:
- MIME type lookup and music format support
- Size limits
- WebP conversion with Pillow
- Missing ffmpeg/ffprobe
"""

import os
import tempfile
import unittest

from PIL import Image

from cms_migrate.errors import MediaTransferError
from cms_migrate.services.media_processing import (
    MediaProcessor,
    get_mime_type,
    is_image,
    is_supported_music_file,
    is_video,
)


class TestMimeTypes(unittest.TestCase):

    def test_get_mime_type(self):
        self.assertEqual(get_mime_type("pose.JPG"), "image/jpeg")
        self.assertEqual(get_mime_type("clip.mp4"), "video/mp4")
        self.assertEqual(get_mime_type("notes.txt"), "application/octet-stream")
        self.assertTrue(is_image("image/webp"))
        self.assertTrue(is_video("video/webm"))
        self.assertFalse(is_image(None))

    def test_music_formats(self):
        self.assertTrue(is_supported_music_file("rain.mp3"))
        self.assertTrue(is_supported_music_file("rain.ogg"))
        self.assertFalse(is_supported_music_file("rain.m4a"))
        self.assertFalse(is_supported_music_file("rain.m4a", "audio/aac"))
        self.assertFalse(is_supported_music_file("rain.wav"))


class TestMediaProcessor(unittest.TestCase):
    """Test MediaProcessor on real files"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def write_image(self, name, mode="RGB") -> str:
        path = os.path.join(self.dir, name)
        Image.new(mode, (32, 20), color=(200, 100, 50) if mode == "RGB" else 3).save(path)
        return path

    def test_to_webp(self):
        path = self.write_image("pose.png")

        converted = MediaProcessor().to_webp(path)

        self.assertEqual(converted, os.path.join(self.dir, "pose.webp"))
        with Image.open(converted) as image:
            self.assertEqual(image.format, "WEBP")
            self.assertEqual(image.size, (32, 20))

    def test_palette_images_are_converted(self):
        path = self.write_image("pose.gif", mode="P")

        converted = MediaProcessor().to_webp(path)

        with Image.open(converted) as image:
            self.assertEqual(image.format, "WEBP")

    def test_webp_input_is_unchanged(self):
        path = os.path.join(self.dir, "already.webp")

        self.assertEqual(MediaProcessor().to_webp(path), path)

    def test_unreadable_image(self):
        path = os.path.join(self.dir, "broken.jpg")
        with open(path, "wb") as f:
            f.write(b"not an image")

        with self.assertRaises(MediaTransferError):
            MediaProcessor().to_webp(path)

    def test_size_limits(self):
        path = os.path.join(self.dir, "big.jpg")
        with open(path, "wb") as f:
            f.write(b"x" * 2048)
        processor = MediaProcessor(max_image_bytes=1024, max_video_bytes=4096)

        with self.assertRaises(MediaTransferError):
            processor.check_size(path, "image/jpeg")
        processor.check_size(path, "video/mp4")

    def test_missing_tools(self):
        processor = MediaProcessor()
        processor.ffprobe_path = None
        processor.ffmpeg_path = None

        with self.assertRaises(MediaTransferError):
            processor.read_duration("clip.mp4")
        with self.assertRaises(MediaTransferError):
            processor.video_thumbnail("clip.mp4")
