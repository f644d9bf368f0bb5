from decimal import Decimal

from django.test import SimpleTestCase

from technicians.models import Technician, haversine_km


class DistanceTests(SimpleTestCase):
    def test_same_point_is_zero(self):
        self.assertEqual(haversine_km(18.5204, 73.8567, 18.5204, 73.8567), 0)

    def test_kothrud_to_pune_centre(self):
        km = haversine_km(Decimal("18.507400"), Decimal("73.807700"), Decimal("18.520400"), Decimal("73.856700"))

        self.assertAlmostEqual(km, 5.37, delta=0.2)
        self.assertAlmostEqual(km, haversine_km(18.5204, 73.8567, 18.5074, 73.8077), places=6)

    def test_missing_coordinates(self):
        tech = Technician(full_name="No Pin", email="n@test.local", mobile="1")

        self.assertIsNone(tech.get_distance_from(Decimal("18.5"), Decimal("73.8")))
