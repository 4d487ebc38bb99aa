import unittest
from datetime import datetime
from pathlib import Path, PurePosixPath

from tidytree.errors import ConfigError, TemplateError
from tidytree.models import Category, FileDescriptor
from tidytree.planning.templates import (
    PRESETS,
    Template,
    resolve_template,
    sanitize,
    variables_for,
)

NOW = datetime(2025, 1, 2, 8, 0, 0)


def _file(name="photo.jpg", category=Category.IMAGES, size=2048, metadata=None):
    path = Path("/data") / name
    ext = path.suffix[1:].lower()
    d = FileDescriptor(
        path=path,
        size=size,
        modified=datetime(2023, 3, 9, 12, 0, 0),
        category=category,
        ext=ext,
    )
    return d.with_metadata(metadata) if metadata else d


def _render(source, descriptor=None):
    descriptor = descriptor or _file()
    return Template(source).render(variables_for(descriptor, NOW), descriptor.name).as_posix()


class TestTemplateRendering(unittest.TestCase):
    def test_presets(self):
        self.assertEqual(_render(PRESETS["by-type"]), "Images/photo.jpg")
        self.assertEqual(_render(PRESETS["by-date"]), "2023/03/photo.jpg")
        self.assertEqual(_render(PRESETS["by-extension"]), "JPG/photo.jpg")

    def test_extension_folder_is_uppercase(self):
        no_ext = _file("README", category=Category.OTHER)
        self.assertEqual(_render(PRESETS["by-extension"], no_ext), "NO_EXTENSION/README")
        self.assertEqual(_render("{ext_folder}/{name}", _file("scan.TIFF")), "TIFF/scan")

    def test_directory_template_appends_file_name(self):
        self.assertEqual(_render("{year}/{month}/{day}"), "2023/03/09/photo.jpg")
        self.assertEqual(_render("Sorted/{category}"), "Sorted/Images/photo.jpg")

    def test_file_template_is_used_as_is(self):
        self.assertEqual(_render("{category}/{name}_{size_kb}kb.{ext}"), "Images/photo_2kb.jpg")

    def test_size_and_now_variables(self):
        self.assertEqual(_render("{size}/{size_mb}/{now.date}/{filename}"), "2048/0/2025-01-02/photo.jpg")
        self.assertEqual(_render("{now.year}-{now.month}-{now.day}"), "2025-01-02/photo.jpg")

    def test_missing_values_render_unknown(self):
        self.assertEqual(_render(PRESETS["by-camera"]), "Unknown/photo.jpg")
        self.assertEqual(_render(PRESETS["music"]), "Unknown/Unknown/photo.jpg")
        no_ext = _file("README", category=Category.OTHER)
        self.assertEqual(_render("{ext}/{filename}", no_ext), "Unknown/README")

    def test_metadata_values(self):
        song = _file("song.mp3", Category.AUDIO, metadata={"artist": "Daft Punk", "album": "Discovery"})
        self.assertEqual(_render(PRESETS["by-album"], song), "Daft Punk/Discovery/song.mp3")

        shot = _file(metadata={"camera": "X100V", "taken.year": "2019", "taken.month": "11"})
        self.assertEqual(_render(PRESETS["photos"], shot), "2019/11/photo.jpg")
        self.assertEqual(_render("{camera}/{taken.year}", shot), "X100V/2019/photo.jpg")

    def test_values_are_sanitized(self):
        song = _file("song.mp3", Category.AUDIO, metadata={"artist": "AC/DC", "album": ".."})
        self.assertEqual(_render("{artist}/{album}", song), "AC_DC/_/song.mp3")

    def test_separators_are_collapsed(self):
        self.assertEqual(_render("a//{year}/./"), "a/2023/photo.jpg")

    def test_render_returns_relative_path(self):
        result = Template("{category}").render(variables_for(_file(), NOW), "photo.jpg")
        self.assertIsInstance(result, PurePosixPath)
        self.assertFalse(result.is_absolute())

    def test_uses_metadata(self):
        self.assertTrue(Template("{camera}").uses_metadata)
        self.assertTrue(Template("{taken.year}/{filename}").uses_metadata)
        self.assertFalse(Template("{category}/{filename}").uses_metadata)

    def test_sanitize(self):
        self.assertEqual(sanitize("a:b*c?"), "a_b_c_")
        self.assertEqual(sanitize("   "), "Unknown")
        self.assertEqual(sanitize("."), "_")


class TestMalformedTemplates(unittest.TestCase):
    def test_unknown_variable(self):
        with self.assertRaises(TemplateError):
            Template("{year}/{nonsense}")

    def test_unbalanced_braces(self):
        for source in ["{year", "year}", "{ye{ar}", "{year}}"]:
            with self.subTest(source=source):
                with self.assertRaises(TemplateError):
                    Template(source)

    def test_absolute_or_escaping_templates(self):
        for source in ["/tmp/{year}", "\\\\server\\{year}", "C:/{year}", "../{year}", "a/../../{year}"]:
            with self.subTest(source=source):
                with self.assertRaises(TemplateError):
                    Template(source)

    def test_template_error_is_config_error(self):
        self.assertTrue(issubclass(TemplateError, ConfigError))


class TestResolveTemplate(unittest.TestCase):
    def test_presets_and_aliases(self):
        self.assertEqual(resolve_template("photos").source, "{taken.year}/{taken.month}/{filename}")
        self.assertEqual(resolve_template("BY-TYPE").source, "{category}/{filename}")
        self.assertEqual(resolve_template("date").source, "{year}/{month}/{filename}")

    def test_custom_template(self):
        self.assertEqual(resolve_template("{year}/{category}").source, "{year}/{category}")
        self.assertEqual(resolve_template("Archive/old").source, "Archive/old")

    def test_unknown_mode(self):
        with self.assertRaises(TemplateError):
            resolve_template("by-colour")


if __name__ == "__main__":
    unittest.main()
