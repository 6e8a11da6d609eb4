import os
import tempfile
import threading
import unittest
from unittest.mock import MagicMock

from cookie_counter.db import InMemoryDbClient
from cookie_counter.errors import DependencyError, ValidationError
from cookie_counter.geocoding import StaticGeocoder
from cookie_counter.service import (
    CookieService,
    PhotoUpload,
    parse_cookie_count,
    storage_key,
)
from cookie_counter.storage import InMemoryPhotoStorage
from cookie_counter.tests.helpers import write_image
from cookie_counter.types import LogPolicy


def _add(service, cookies, city="Austin", cookie_type="chocolate chip", **kwargs):
    return service.add_contribution(cookies, city, "TX", "USA", cookie_type, **kwargs)


class ParseCookieCountTests(unittest.TestCase):
    def test_accepts_positive_whole_numbers(self):
        self.assertEqual(parse_cookie_count("3"), 3)
        self.assertEqual(parse_cookie_count(" 12 "), 12)
        self.assertEqual(parse_cookie_count("2.0"), 2)
        self.assertEqual(parse_cookie_count(7), 7)

    def test_rejects_everything_else(self):
        for value in (None, "", "0", "-1", "abc", "1.5", "nan", "inf", True, 0):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    parse_cookie_count(value)


class StorageKeyTests(unittest.TestCase):
    def test_key_is_prefixed_and_sanitized(self):
        key = storage_key("../My Photo!.PNG")
        self.assertTrue(key.startswith("uploads/"))
        self.assertTrue(key.endswith("-My_Photo.png"))

    def test_extension_override(self):
        self.assertTrue(storage_key("cookie.gif", extension="jpg").endswith("-cookie.jpg"))


class CookieServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.service = CookieService(self.db)

    def test_total_matches_sum_of_contributions(self):
        amounts = [3, 1, 10, 4]
        types = ["chocolate chip", "oatmeal", "chocolate chip", "snickerdoodle"]
        for amount, cookie_type in zip(amounts, types):
            _add(self.service, amount, cookie_type=cookie_type)

        stats = self.service.get_stats()
        self.assertEqual(stats.total, sum(amounts))
        counts = {record.type: record.count for record in stats.types}
        self.assertEqual(
            counts, {"chocolate chip": 13, "oatmeal": 1, "snickerdoodle": 4}
        )
        self.assertEqual(sum(log.cookies for log in stats.locations), sum(amounts))
        self.assertEqual(len(stats.locations), 4)

    def test_fields_are_trimmed(self):
        stats = self.service.add_contribution(
            "2", "  Austin ", "TX", "USA", " sugar "
        )
        self.assertEqual(stats.locations[0].city, "Austin")
        self.assertEqual(stats.types[0].type, "sugar")

    def test_blank_fields_are_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.add_contribution("2", "Austin", "   ", "USA", "sugar")
        self.assertEqual(self.service.get_stats().total, 0)

    def test_aggregate_policy_collapses_logs(self):
        service = CookieService(self.db, log_policy=LogPolicy.AGGREGATE)
        _add(service, 3)
        _add(service, 2, city="Dallas")
        stats = _add(service, 4)

        self.assertEqual(stats.total, 9)
        self.assertEqual(len(stats.locations), 2)
        by_city = {log.city: log.cookies for log in stats.locations}
        self.assertEqual(by_city, {"Austin": 7, "Dallas": 2})
        self.assertEqual(sum(by_city.values()), stats.total)

    def test_switching_policy_keeps_logs_consistent_with_total(self):
        _add(self.service, 3)
        _add(self.service, 3)
        service = CookieService(self.db, log_policy=LogPolicy.AGGREGATE)
        _add(service, 2)
        stats = _add(service, 4)

        self.assertEqual(stats.total, 12)
        self.assertEqual(sorted(log.cookies for log in stats.locations), [3, 3, 6])

    def test_concurrent_writers_do_not_lose_updates(self):
        def worker():
            for _ in range(25):
                _add(self.service, 1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stats = self.service.get_stats()
        self.assertEqual(stats.total, 200)
        self.assertEqual(stats.types[0].count, 200)

    def test_total_reads_wait_for_writers(self):
        result = []
        with self.db._lock:
            reader = threading.Thread(target=lambda: result.append(self.db.get_total()))
            reader.start()
            reader.join(0.1)
            self.assertTrue(reader.is_alive())
            self.db.total = 5
        reader.join()
        self.assertEqual(result, [5])

    def test_geocoded_coordinates_are_recorded(self):
        geocoder = StaticGeocoder(locations={"Austin, TX, USA": (30.27, -97.74)})
        service = CookieService(self.db, geocoder=geocoder)
        stats = _add(service, 1)
        self.assertEqual(geocoder.queries, ["Austin, TX, USA"])
        self.assertEqual(
            (stats.locations[0].latitude, stats.locations[0].longitude),
            (30.27, -97.74),
        )

    def test_geocoder_failure_leaves_state_untouched(self):
        geocoder = MagicMock()
        geocoder.geocode.side_effect = DependencyError("provider down")
        service = CookieService(self.db, geocoder=geocoder)
        with self.assertRaises(DependencyError):
            _add(service, 1)
        self.assertEqual(self.db.get_total(), 0)
        self.assertEqual(self.db.list_type_counts(), [])


class PhotoHandlingTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryPhotoStorage()
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def _upload(self, name="cookie.png", content_type="image/png", width=40):
        path = os.path.join(self.tmpdir.name, "upload.bin")
        write_image(path, width=width)
        return PhotoUpload(filename=name, content_type=content_type, path=path)

    def test_original_upload_is_discarded_after_normalization(self):
        service = CookieService(self.db, photo_storage=self.storage)
        upload = self._upload()
        stats = _add(service, 1, photo=upload)

        self.assertFalse(os.path.exists(upload.path))
        self.assertTrue(stats.locations[0].photo.endswith("-cookie.jpg"))
        (_, content_type), = self.storage.stored_objects.values()
        self.assertEqual(content_type, "image/jpeg")

    def test_unnormalized_photo_keeps_original_format(self):
        service = CookieService(
            self.db, photo_storage=self.storage, normalize_photos=False
        )
        stats = _add(service, 1, photo=self._upload())
        self.assertTrue(stats.locations[0].photo.endswith("-cookie.png"))
        (_, content_type), = self.storage.stored_objects.values()
        self.assertEqual(content_type, "image/png")

    def test_broken_image_fails_without_mutation(self):
        path = os.path.join(self.tmpdir.name, "broken.png")
        with open(path, "wb") as f:
            f.write(b"\x89PNG but not really")
        service = CookieService(self.db, photo_storage=self.storage)
        upload = PhotoUpload(filename="broken.png", content_type="image/png", path=path)

        with self.assertRaises(DependencyError):
            _add(service, 1, photo=upload)
        self.assertEqual(self.db.get_total(), 0)
        self.assertEqual(self.db.list_contributions(), [])
        self.assertEqual(self.storage.stored_objects, {})

    def test_disallowed_extension_is_rejected(self):
        service = CookieService(self.db, photo_storage=self.storage)
        upload = self._upload(name="cookie.bmp", content_type="image/bmp")
        with self.assertRaises(ValidationError):
            _add(service, 1, photo=upload)
        self.assertEqual(self.storage.stored_objects, {})

    def test_photo_ignored_when_storage_disabled(self):
        service = CookieService(self.db)
        stats = _add(service, 1, photo=self._upload())
        self.assertIsNone(stats.locations[0].photo)


if __name__ == "__main__":
    unittest.main()
