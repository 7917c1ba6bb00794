"""
Модульные тесты для чтения mod.xml
"""

import os
import sys
import tempfile
import unittest

from mod_info import ConfigOptionChoice, ModFolder, ModInfoError, load_mod_info, parse_mod_info


SAMPLE = """<?xml version="1.0" encoding="utf-8"?>
<ModInfo>
  <ID>2d8c4b3e-0000-4c5e-9d00-17a1b2c3d4e5</ID>
  <Name>Remako HD Graphics</Name>
  <Author>Remako Team</Author>
  <Version>1.0</Version>
  <Description>Upscaled menu avatars</Description>
  <Category>Textures</Category>
  <PreviewFile>preview.png</PreviewFile>
  <ModFolder Folder="menu" />
  <ModFolder Folder="menu_alt" ActiveWhen="AltAvatars = 1" />
  <ConfigOption>
    <Type>Bool</Type>
    <Default>1</Default>
    <ID>AltAvatars</ID>
    <Name>Alternative avatars</Name>
    <Description>Use the alternative set</Description>
    <Option Value="0" Name="Off" />
    <Option Value="1" Name="On" PreviewFile="alt.png" />
  </ConfigOption>
  <Compatibility>7H 2.x</Compatibility>
</ModInfo>
"""


class TestModInfo(unittest.TestCase):
    """Тесты разбора описания мода"""

    def test_text_fields(self):
        info = parse_mod_info(SAMPLE)
        self.assertEqual(info.name, 'Remako HD Graphics')
        self.assertEqual(info.author, 'Remako Team')
        self.assertEqual(info.version, '1.0')
        self.assertEqual(info.category, 'Textures')
        self.assertEqual(info.preview_file, 'preview.png')
        self.assertIsNone(info.link)

    def test_mod_folders(self):
        """ModFolder: Folder и необязательное условие ActiveWhen"""
        info = parse_mod_info(SAMPLE)
        self.assertEqual(info.mod_folders, [
            ModFolder('menu', None),
            ModFolder('menu_alt', 'AltAvatars = 1'),
        ])

    def test_config_options(self):
        info = parse_mod_info(SAMPLE)
        self.assertEqual(len(info.config_options), 1)

        option = info.config_options[0]
        self.assertEqual(option.type, 'Bool')
        self.assertTrue(option.default)
        self.assertEqual(option.id, 'AltAvatars')
        self.assertEqual(option.options, [
            ConfigOptionChoice(0, 'Off', None),
            ConfigOptionChoice(1, 'On', 'alt.png'),
        ])

    def test_unknown_elements_kept(self):
        """Незнакомые теги верхнего уровня сохраняются как есть"""
        info = parse_mod_info(SAMPLE)
        self.assertEqual(info.extra, {'Compatibility': '7H 2.x'})

    def test_folder_as_child_elements(self):
        """Folder и ActiveWhen могут быть и вложенными тегами"""
        info = parse_mod_info(
            "<ModInfo><ModFolder><Folder>hd</Folder><ActiveWhen>HD = 1</ActiveWhen></ModFolder></ModInfo>"
        )
        self.assertEqual(info.mod_folders, [ModFolder('hd', 'HD = 1')])

    def test_wrong_root(self):
        with self.assertRaises(ModInfoError):
            parse_mod_info("<Mod><Name>x</Name></Mod>")

    def test_malformed_xml(self):
        with self.assertRaises(ModInfoError):
            parse_mod_info("<ModInfo><Name>x</ModInfo>")

    def test_bad_default(self):
        """Default должен быть числом"""
        with self.assertRaises(ModInfoError):
            parse_mod_info("<ModInfo><ConfigOption><Default>yes</Default></ConfigOption></ModInfo>")

    def test_unknown_config_option_element(self):
        """В ConfigOption незнакомый тег - ошибка"""
        with self.assertRaises(ModInfoError):
            parse_mod_info("<ModInfo><ConfigOption><Colour>red</Colour></ConfigOption></ModInfo>")

    def test_load_from_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'mod.xml')
            with open(path, 'w', encoding='utf-8') as f:
                f.write(SAMPLE)

            info = load_mod_info(path)
            self.assertEqual(info.name, 'Remako HD Graphics')


def run_tests():
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestModInfo))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return 0 if result.wasSuccessful() else 1


if __name__ == '__main__':
    sys.exit(run_tests())
