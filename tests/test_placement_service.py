import pytest

from conftest import CENTER
from schemas import Location
from services.placement_service import (
    random_point_within,
    haversine_distance,
    generate_skillcheck_positions,
    generate_escape_area,
)


def test_haversine_known_distance():
    # 緯度差 1 度約 111 公里
    a = Location(latitude=0, longitude=0)
    b = Location(latitude=1, longitude=0)
    assert haversine_distance(a, b) == pytest.approx(111195, rel=1e-3)


@pytest.mark.parametrize("center", [CENTER, Location(latitude=-33.86, longitude=151.21), Location(latitude=60.17, longitude=24.94)])
def test_points_stay_within_radius(center):
    for _ in range(200):
        point = random_point_within(center, 500)
        # 經緯度近似的誤差容許 1%
        assert haversine_distance(center, point) <= 505


def test_points_are_not_deterministic():
    points = {(p.latitude, p.longitude) for p in (random_point_within(CENTER, 500) for _ in range(20))}
    assert len(points) > 1


def test_skillcheck_positions():
    skillchecks = generate_skillcheck_positions(CENTER, 5, 300)

    assert len(skillchecks) == 5
    assert len({sc.id for sc in skillchecks}) == 5
    assert all(not sc.is_completed for sc in skillchecks)
    assert all(haversine_distance(CENTER, sc.location) <= 303 for sc in skillchecks)


def test_escape_area_is_revealed():
    area = generate_escape_area(CENTER, 500)

    assert area.is_revealed
    assert area.revealed_at is not None
    assert area.escaped_players == []
