from rating import MIN_RATING, STARTING_RATING, RatingService


def test_unknown_player_starts_at_default():
    ratings = RatingService()
    assert ratings.get_rating("new") == STARTING_RATING == 1000


def test_update_rating_applies_delta():
    ratings = RatingService()
    assert ratings.update_rating("a", 35) == 1035
    assert ratings.update_rating("a", -35) == 1000
    assert ratings.get_rating("a") == 1000


def test_rating_never_drops_below_floor():
    ratings = RatingService()
    ratings.set_rating("a", 20)
    assert ratings.update_rating("a", -35) == MIN_RATING == 0
    assert ratings.set_rating("b", -5) == 0


def test_leaderboard_orders_by_rating_then_id():
    ratings = RatingService()
    ratings.set_rating("b", 1100)
    ratings.set_rating("a", 1100)
    ratings.set_rating("c", 900)
    assert ratings.leaderboard() == [("a", 1100), ("b", 1100), ("c", 900)]
    assert ratings.leaderboard(1) == [("a", 1100)]


def test_pending_writes_are_drained_once():
    ratings = RatingService()
    ratings.update_rating("a", 35)
    ratings.update_rating("b", -35)
    assert ratings.has_pending()
    assert ratings.drain_pending() == {"a": 1035, "b": 965}
    assert not ratings.has_pending()
    assert ratings.drain_pending() == {}


def test_load_does_not_mark_pending():
    ratings = RatingService()
    ratings.load({"a": 1200, "b": -10})
    assert ratings.get_rating("a") == 1200
    assert ratings.get_rating("b") == 0
    assert not ratings.has_pending()
