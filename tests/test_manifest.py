import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path

from apkdisguise.core.manifest import (
    ANDROID_MIN_SDK,
    ANDROID_BACKUP_AGENT,
    ANDROID_MANAGE_SPACE,
    ANDROID_NAME,
    ANDROID_PARENT_ACTIVITY,
    ANDROID_TARGET_SDK,
    ManifestPatcher,
)
from apkdisguise.exceptions import ManifestMalformedError, ManifestNotFoundError
from apkdisguise.models.apk import PackageIdentifier
from tests.fakes import SAMPLE_MANIFEST

TARGET = PackageIdentifier(prefix="cn.chinapost", suffix="scanner")


class ManifestPatcherTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.manifest = Path(self._tmp.name) / "AndroidManifest.xml"
        self.manifest.write_text(SAMPLE_MANIFEST)
        self.patcher = ManifestPatcher()

    def tearDown(self):
        self._tmp.cleanup()

    def parse(self):
        return ET.parse(self.manifest).getroot()

    def test_read_package(self):
        self.assertEqual(self.patcher.read_package(self.manifest), "com.vendor.scanner")

    def test_rewrites_package_attribute(self):
        result = self.patcher.patch(self.manifest, TARGET)

        self.assertEqual(result.original_package, "com.vendor.scanner")
        self.assertEqual(result.new_package, "cn.chinapost.scanner")
        self.assertEqual(self.parse().get("package"), "cn.chinapost.scanner")

    def test_injects_uses_sdk_before_application(self):
        result = self.patcher.patch(self.manifest, TARGET)

        self.assertTrue(result.injected_uses_sdk)
        tags = [child.tag for child in self.parse()]
        self.assertLess(tags.index("uses-sdk"), tags.index("application"))
        uses_sdk = self.parse().find("uses-sdk")
        self.assertEqual(uses_sdk.get(ANDROID_MIN_SDK), "19")
        self.assertEqual(uses_sdk.get(ANDROID_TARGET_SDK), "27")

    def test_existing_uses_sdk_is_not_duplicated(self):
        self.manifest.write_text(
            SAMPLE_MANIFEST.replace(
                "<application", '<uses-sdk android:targetSdkVersion="30"/>\n    <application'
            )
        )

        result = self.patcher.patch(self.manifest, TARGET)

        self.assertFalse(result.injected_uses_sdk)
        found = self.parse().findall("uses-sdk")
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].get(ANDROID_MIN_SDK), "19")
        self.assertEqual(found[0].get(ANDROID_TARGET_SDK), "30")

    def test_relative_component_names_keep_pointing_at_original_classes(self):
        result = self.patcher.patch(self.manifest, TARGET)

        root = self.parse()
        self.assertEqual(result.expanded_names, 2)
        self.assertEqual(
            root.find("application").get(ANDROID_NAME), "com.vendor.scanner.ScannerApp"
        )
        self.assertEqual(
            root.find("application/activity").get(ANDROID_NAME),
            "com.vendor.scanner.MainActivity",
        )
        self.assertEqual(
            root.find("application/service").get(ANDROID_NAME),
            "com.vendor.scanner.sync.SyncService",
        )

    def test_parent_activity_and_application_class_attributes_are_qualified(self):
        self.manifest.write_text(
            SAMPLE_MANIFEST.replace(
                'android:name=".ScannerApp"',
                'android:name=".ScannerApp" android:backupAgent="Backup"'
                ' android:manageSpaceActivity=".ManageSpace"',
            ).replace(
                '<service ',
                '<activity android:name=".Detail" android:parentActivityName=".MainActivity"/>\n        <service ',
            )
        )

        result = self.patcher.patch(self.manifest, TARGET)

        root = self.parse()
        application = root.find("application")
        self.assertEqual(application.get(ANDROID_BACKUP_AGENT), "com.vendor.scanner.Backup")
        self.assertEqual(
            application.get(ANDROID_MANAGE_SPACE), "com.vendor.scanner.ManageSpace"
        )
        detail = application.findall("activity")[1]
        self.assertEqual(detail.get(ANDROID_PARENT_ACTIVITY), "com.vendor.scanner.MainActivity")
        self.assertEqual(result.expanded_names, 6)

    def test_other_content_survives(self):
        self.patcher.patch(self.manifest, TARGET)

        text = self.manifest.read_text()
        self.assertIn('xmlns:android="http://schemas.android.com/apk/res/android"', text)
        self.assertIn("android.permission.CAMERA", text)
        self.assertIn("android.intent.action.MAIN", text)
        self.assertIn('platformBuildVersionCode="27"', text)

    def test_comments_are_kept(self):
        self.manifest.write_text(
            SAMPLE_MANIFEST.replace("<application", "<!-- keep me -->\n    <application")
        )

        self.patcher.patch(self.manifest, TARGET)

        self.assertIn("<!-- keep me -->", self.manifest.read_text())

    def test_patch_is_idempotent(self):
        self.patcher.patch(self.manifest, TARGET)
        first = self.manifest.read_text()

        self.patcher.patch(self.manifest, TARGET)

        self.assertEqual(self.manifest.read_text(), first)

    def test_custom_sdk_levels(self):
        ManifestPatcher(min_sdk="21", target_sdk="28").patch(self.manifest, TARGET)

        uses_sdk = self.parse().find("uses-sdk")
        self.assertEqual(uses_sdk.get(ANDROID_MIN_SDK), "21")
        self.assertEqual(uses_sdk.get(ANDROID_TARGET_SDK), "28")

    def test_missing_manifest(self):
        with self.assertRaises(ManifestNotFoundError):
            self.patcher.patch(self.manifest.with_name("missing.xml"), TARGET)

    def test_missing_package_attribute(self):
        self.manifest.write_text("<manifest><application/></manifest>")

        with self.assertRaises(ManifestMalformedError):
            self.patcher.patch(self.manifest, TARGET)

    def test_wrong_root_element(self):
        self.manifest.write_text('<resources package="com.vendor.scanner"/>')

        with self.assertRaises(ManifestMalformedError):
            self.patcher.read_package(self.manifest)

    def test_unparseable_manifest(self):
        self.manifest.write_text("<manifest package=")

        with self.assertRaises(ManifestMalformedError):
            self.patcher.patch(self.manifest, TARGET)

        self.assertEqual(self.manifest.read_text(), "<manifest package=")


if __name__ == "__main__":
    unittest.main()
