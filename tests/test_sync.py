from typing import Dict, List

from frame_server.client.sync import RotationTracker


def _images(*ids: str) -> List[Dict[str, str]]:
    return [{'id': image_id, 'filename': image_id} for image_id in ids]


def _loaded(*ids: str) -> RotationTracker:
    tracker = RotationTracker(duration=5000)
    tracker.apply_image_list(_images(*ids))
    return tracker


def test_first_load_selects_first_image_and_reports_it():
    tracker = RotationTracker()
    outcome = tracker.apply_image_list(_images('A', 'B', 'C'))

    assert tracker.current_id == 'A'
    assert tracker.index == 0
    assert outcome.render is True
    assert outcome.push_current == 'A'
    assert outcome.restart_timer is True


def test_first_load_starts_at_server_current_without_pushing():
    tracker = RotationTracker()
    tracker.apply_server_state({'currentImageId': 'B', 'duration': 5000, 'activeCollectionId': None})
    outcome = tracker.apply_image_list(_images('A', 'B', 'C'))

    assert tracker.current_id == 'B'
    assert outcome.render is True
    assert outcome.push_current is None


def test_unchanged_list_is_a_no_op():
    tracker = _loaded('A', 'B')
    assert tracker.apply_image_list(_images('A', 'B')).idle


def test_current_image_keeps_showing_when_list_reorders():
    tracker = _loaded('A', 'B', 'C')
    tracker.advance()
    assert tracker.current_id == 'B'

    outcome = tracker.apply_image_list(_images('X', 'A', 'B', 'C'))
    assert tracker.current_id == 'B'
    assert tracker.index == 2
    assert outcome.render is False


def test_removed_current_falls_back_to_nearest_valid_index():
    tracker = _loaded('A', 'B', 'C')
    tracker.advance()
    assert tracker.index == 1

    outcome = tracker.apply_image_list(_images('A', 'C'))

    assert tracker.index == 1
    assert tracker.current_id == 'C'
    assert outcome.render is True
    assert outcome.push_current == 'C'


def test_removing_the_tail_clamps_to_new_last_index():
    tracker = _loaded('A', 'B', 'C')
    tracker.advance()
    tracker.advance()
    assert tracker.current_id == 'C'

    tracker.apply_image_list(_images('A'))
    assert tracker.index == 0
    assert tracker.current_id == 'A'


def test_empty_list_clears_and_refill_is_a_first_load():
    tracker = _loaded('A', 'B')
    outcome = tracker.apply_image_list([])
    assert tracker.current_id is None
    assert tracker.current_image() is None
    assert outcome.render is True

    outcome = tracker.apply_image_list(_images('C', 'D'))
    assert tracker.current_id == 'C'
    assert outcome.push_current == 'C'


def test_advance_wraps_around_and_reports_each_step():
    tracker = _loaded('A', 'B', 'C')
    seen = []
    for _ in range(4):
        outcome = tracker.advance()
        seen.append((tracker.current_id, outcome.push_current))
    assert seen == [('B', 'B'), ('C', 'C'), ('A', 'A'), ('B', 'B')]


def test_single_image_never_rotates_and_is_reported_once():
    tracker = RotationTracker()
    first = tracker.apply_image_list(_images('A'))
    assert first.push_current == 'A'

    pushes = [tracker.advance().push_current for _ in range(5)]
    assert pushes == [None] * 5
    assert tracker.current_id == 'A'

    tracker.apply_image_list(_images('B'))
    assert tracker.current_id == 'B'
    assert [tracker.advance().push_current for _ in range(3)] == [None] * 3


def test_navigation_needs_two_images():
    single = _loaded('A')
    assert single.navigate(1).idle
    assert single.current_id == 'A'

    tracker = _loaded('A', 'B', 'C')
    outcome = tracker.navigate(-1)
    assert tracker.current_id == 'C'
    assert outcome.restart_timer is True
    assert outcome.push_current == 'C'


def test_server_asserted_image_wins_over_local_rotation():
    tracker = _loaded('A', 'B', 'C')
    tracker.advance()

    outcome = tracker.apply_server_state({'currentImageId': 'A', 'duration': 5000, 'activeCollectionId': None})

    assert tracker.current_id == 'A'
    assert tracker.index == 0
    assert outcome.render is True
    assert outcome.restart_timer is True
    assert outcome.push_current is None


def test_duration_change_restarts_timer():
    tracker = _loaded('A', 'B')
    outcome = tracker.apply_server_state({'currentImageId': 'A', 'duration': 9000, 'activeCollectionId': None})
    assert tracker.duration == 9000
    assert outcome.restart_timer is True
    assert outcome.render is False

    assert tracker.apply_server_state({'currentImageId': 'A', 'duration': 9000}).idle
    assert tracker.apply_server_state({'currentImageId': 'A', 'duration': 10}).idle
    assert tracker.duration == 9000


def test_collection_change_requests_immediate_refresh_without_pushing():
    tracker = _loaded('A', 'B')
    outcome = tracker.apply_server_state({'currentImageId': 'Z', 'duration': 5000, 'activeCollectionId': 'trip'})
    assert tracker.collection_id == 'trip'
    assert outcome.refresh_images is True
    assert outcome.push_current is None


def test_cleared_server_current_is_reasserted_by_client():
    tracker = _loaded('A', 'B')
    outcome = tracker.apply_server_state({'currentImageId': None, 'duration': 5000, 'activeCollectionId': None})
    assert outcome.push_current == 'A'
    assert tracker.current_id == 'A'


def test_unknown_server_image_refreshes_first_then_reasserts():
    tracker = _loaded('A', 'B')
    state = {'currentImageId': 'NEW', 'duration': 5000, 'activeCollectionId': None}

    first = tracker.apply_server_state(state)
    assert first.refresh_images is True
    assert first.push_current is None

    second = tracker.apply_server_state(state)
    assert second.push_current == 'A'

    tracker.apply_image_list(_images('A', 'B', 'NEW'))
    third = tracker.apply_server_state(state)
    assert tracker.current_id == 'NEW'
    assert third.render is True


def _state(current, duration=5000, collection=None):
    return {'currentImageId': current, 'duration': duration, 'activeCollectionId': collection}


def test_server_value_we_are_replacing_is_ignored_until_report_lands():
    tracker = _loaded('A', 'B', 'C')
    tracker.apply_server_state(_state('A'))
    outcome = tracker.advance()
    token = tracker.begin_push(outcome.push_current)

    assert tracker.apply_server_state(_state('A')).idle
    assert tracker.current_id == 'B'

    assert tracker.finish_push(token) is None
    adopted = tracker.apply_server_state(_state('A'))
    assert tracker.current_id == 'A'
    assert adopted.render is True


def test_server_selection_during_report_is_restored_afterwards():
    tracker = _loaded('A', 'B', 'C')
    tracker.apply_server_state(_state('A'))
    token = tracker.begin_push(tracker.advance().push_current)

    tracker.apply_server_state(_state('C'))
    assert tracker.current_id == 'C'

    assert tracker.finish_push(token) == 'C'
    retry = tracker.begin_push('C', overwrites='B')
    assert tracker.apply_server_state(_state('B')).idle
    assert tracker.current_id == 'C'
    assert tracker.finish_push(retry) is None


def test_report_for_an_image_no_longer_shown_is_dropped():
    tracker = _loaded('A', 'B', 'C')
    tracker.advance()
    tracker.apply_server_state(_state('C'))
    assert tracker.begin_push('B') is None


def test_undelivered_report_needs_no_correction():
    tracker = _loaded('A', 'B', 'C')
    tracker.apply_server_state(_state('A'))
    token = tracker.begin_push(tracker.advance().push_current)
    tracker.apply_server_state(_state('C'))
    assert tracker.finish_push(token, delivered=False) is None
