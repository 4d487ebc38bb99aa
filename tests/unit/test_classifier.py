import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import mutagen
from PIL import Image

from tidytree.classifier import (
    AudioTagProvider,
    Classifier,
    ExifProvider,
    MetadataProvider,
    NoMetadata,
    classify,
    provider_for,
)
from tidytree.models import Category


def _save_jpeg(path: Path, tags: dict) -> None:
    img = Image.new("RGB", (16, 16), color=(200, 30, 30))
    exif = Image.Exif()
    for tag_id, value in tags.items():
        exif[tag_id] = value
    img.save(path, "JPEG", exif=exif.tobytes())


class TestClassify(unittest.TestCase):
    def test_known_extensions(self):
        self.assertEqual(classify("jpg"), Category.IMAGES)
        self.assertEqual(classify(".PDF"), Category.DOCUMENTS)
        self.assertEqual(classify("mkv"), Category.VIDEOS)
        self.assertEqual(classify("flac"), Category.AUDIO)
        self.assertEqual(classify("7z"), Category.ARCHIVES)
        self.assertEqual(classify("rs"), Category.CODE)
        self.assertEqual(classify("yml"), Category.DATA)

    def test_unknown_or_missing_extension_is_other(self):
        self.assertEqual(classify(""), Category.OTHER)
        self.assertEqual(classify("xyz"), Category.OTHER)

    def test_describe(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "Photo.JPG"
            path.write_bytes(b"x" * 10)

            d = Classifier().describe(path)

            self.assertEqual(d.size, 10)
            self.assertEqual(d.ext, "jpg")
            self.assertEqual(d.category, Category.IMAGES)
            self.assertEqual(d.mime, "image/jpeg")
            self.assertEqual(d.metadata, {})

    def test_provider_selected_by_category(self):
        self.assertIsInstance(provider_for(Category.IMAGES), ExifProvider)
        self.assertIsInstance(provider_for(Category.AUDIO), AudioTagProvider)
        self.assertIsInstance(provider_for(Category.DOCUMENTS), NoMetadata)


class TestExifProvider(unittest.TestCase):
    def test_reads_camera_and_date(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "shot.jpg"
            _save_jpeg(path, {271: "Canon", 272: "EOS 5D/II", 306: "2021:07:04 10:30:00"})

            meta = ExifProvider().read(path)

            self.assertEqual(meta["camera"], "EOS 5D_II")
            self.assertEqual(meta["date_taken"], "2021-07-04")
            self.assertEqual(meta["taken.year"], "2021")
            self.assertEqual(meta["taken.month"], "07")

    def test_falls_back_to_make(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "shot.jpg"
            _save_jpeg(path, {271: "NIKON"})

            meta = ExifProvider().read(path)

            self.assertEqual(meta, {"camera": "NIKON"})

    def test_no_exif_is_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "plain.png"
            Image.new("RGB", (4, 4)).save(path)
            self.assertEqual(ExifProvider().read(path), {})

    def test_corrupt_image_is_empty(self):
        """Unparseable files mean absence of metadata, not an error."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.jpg"
            path.write_bytes(b"definitely not a jpeg")
            self.assertEqual(ExifProvider().read(path), {})


class TestAudioTagProvider(unittest.TestCase):
    @patch("tidytree.classifier.mutagen.File")
    def test_reads_artist_and_album(self, mock_file):
        mock_file.return_value = {"artist": ["AC/DC"], "album": ["Back in Black"]}

        meta = AudioTagProvider().read(Path("song.mp3"))

        self.assertEqual(meta, {"artist": "AC_DC", "album": "Back in Black"})
        mock_file.assert_called_once_with(Path("song.mp3"), easy=True)

    @patch("tidytree.classifier.mutagen.File")
    def test_unknown_format_is_empty(self, mock_file):
        mock_file.return_value = None
        self.assertEqual(AudioTagProvider().read(Path("song.mp3")), {})

    @patch("tidytree.classifier.mutagen.File")
    def test_parse_error_is_empty(self, mock_file):
        mock_file.side_effect = mutagen.MutagenError("bad header")
        self.assertEqual(AudioTagProvider().read(Path("song.mp3")), {})

    @patch("tidytree.classifier.mutagen.File")
    def test_missing_tags_are_left_out(self, mock_file):
        mock_file.return_value = {"artist": ["Daft Punk"]}
        self.assertEqual(AudioTagProvider().read(Path("song.mp3")), {"artist": "Daft Punk"})


class FakeProvider(MetadataProvider):
    keys = ("artist",)

    def read(self, path):
        return {"artist": path.stem.upper()}


class TestEnrichment(unittest.TestCase):
    def test_enrich_all_keeps_order(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            classifier = Classifier(providers={Category.AUDIO: FakeProvider()})
            descriptors = []
            for name in ["b.mp3", "a.mp3", "notes.txt", "c.mp3"]:
                (root / name).write_text(name)
                descriptors.append(classifier.describe(root / name))

            enriched = classifier.enrich_all(descriptors, workers=4, progress=False)

            self.assertEqual([d.name for d in enriched], ["b.mp3", "a.mp3", "notes.txt", "c.mp3"])
            self.assertEqual(enriched[0].metadata, {"artist": "B"})
            self.assertEqual(enriched[2].metadata, {})
            self.assertEqual(enriched[3].metadata, {"artist": "C"})


if __name__ == "__main__":
    unittest.main()
