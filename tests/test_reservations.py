"""
Integration tests for the reservation ledger.

These check that quantity_left always matches the live reservations.
Run: pytest tests/test_reservations.py -v
"""
from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from app import app, db
from conftest import login, fetch_post, count_reservations, post_form
from errors import DuplicateError, ExhaustedError, NotFoundError, StorageError, ValidationError
from models import Reservation, utcnow
from signals import reservation_created, reservation_cancelled
import reservations


def _reserve(client, post_id):
    return client.post('/reservations', json={'post_id': post_id})


@pytest.mark.integration
class TestCreateReservation:
    """Test POST /reservations"""

    def test_requires_login(self, client, test_post):
        assert _reserve(client, test_post.id).status_code == 401

    def test_requires_post_id(self, reserver_client):
        response = reserver_client.post('/reservations', json={})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'post_id is required'

    def test_reserve_decrements_quantity(self, reserver_client, other_user, test_post):
        response = _reserve(reserver_client, test_post.id)
        assert response.status_code == 200
        body = response.get_json()
        assert body['success'] is True
        assert body['reservation']['status'] == 'reserved'
        assert body['reservation']['user_id'] == other_user.id
        assert body['reservation']['post_id'] == test_post.id
        assert fetch_post(test_post.id).quantity_left == 4

    def test_duplicate_reservation_rejected(self, reserver_client, other_user, test_post):
        _reserve(reserver_client, test_post.id)
        response = _reserve(reserver_client, test_post.id)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'You have already reserved this post'
        assert count_reservations(user_id=other_user.id, post_id=test_post.id) == 1
        assert fetch_post(test_post.id).quantity_left == 4

    def test_out_of_range_post_id(self, reserver_client):
        response = _reserve(reserver_client, 10 ** 30)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'post_id is required'

    def test_post_not_found(self, reserver_client):
        response = _reserve(reserver_client, 99999)
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Post not found'

    def test_exhausted_post(self, reserver_client, make_post, test_user):
        """Reserving with nothing left fails and writes nothing"""
        post = make_post(test_user, quantity=3, quantity_left=0)
        response = _reserve(reserver_client, post.id)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'This post is no longer available'
        assert count_reservations(post_id=post.id) == 0
        assert fetch_post(post.id).quantity_left == 0

    def test_owner_cannot_reserve_own_post(self, authenticated_client, test_post):
        response = _reserve(authenticated_client, test_post.id)
        assert response.status_code == 400
        assert fetch_post(test_post.id).quantity_left == 5

    def test_ended_post_cannot_be_reserved(self, reserver_client, make_post, test_user):
        post = make_post(test_user, end_time=utcnow() - timedelta(minutes=1))
        response = _reserve(reserver_client, post.id)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'This post has ended'

    def test_last_unit(self, client, make_post, make_user, test_user):
        post = make_post(test_user, quantity=1)
        first = make_user('first@example.com')
        second = make_user('second@example.com')

        assert _reserve(login(client, first), post.id).status_code == 200
        assert fetch_post(post.id).quantity_left == 0
        response = _reserve(login(client, second), post.id)
        assert response.status_code == 400
        assert fetch_post(post.id).quantity_left == 0
        assert count_reservations(post_id=post.id) == 1


@pytest.mark.unit
class TestReservationConsistency:
    """Service-level checks of the single-transaction reserve"""

    def test_lost_race_writes_nothing(self, other_user, make_post, test_user, monkeypatch):
        """
        The availability check passed but another reserver took the last unit
        before our conditional update ran: the reservation row must not survive.
        """
        post = make_post(test_user, quantity=2, quantity_left=0)
        stale_view = SimpleNamespace(id=post.id, user_id=test_user.id, is_active=True, quantity_left=1)

        with app.app_context():
            monkeypatch.setattr(db.session, 'get', lambda model, ident: stale_view)
            with pytest.raises(ExhaustedError):
                reservations.create_reservation(other_user.id, post.id)
            monkeypatch.undo()

        assert count_reservations(post_id=post.id) == 0
        assert fetch_post(post.id).quantity_left == 0

    def test_write_failure_rolls_back_reservation(self, other_user, test_post, monkeypatch):
        """A failed write after the insert leaves neither a reservation nor a decrement"""
        def failing_commit():
            raise OperationalError("UPDATE posts", {}, Exception("database is locked"))

        with app.app_context():
            monkeypatch.setattr(db.session, 'commit', failing_commit)
            with pytest.raises(StorageError):
                reservations.create_reservation(other_user.id, test_post.id)
            monkeypatch.undo()

        assert count_reservations(post_id=test_post.id) == 0
        assert fetch_post(test_post.id).quantity_left == 5

    def test_service_errors(self, other_user, test_post):
        with app.app_context():
            with pytest.raises(ValidationError):
                reservations.create_reservation(other_user.id, None)
            with pytest.raises(ValidationError):
                reservations.create_reservation(other_user.id, 'abc')
            with pytest.raises(NotFoundError):
                reservations.create_reservation(other_user.id, 99999)
            reservations.create_reservation(other_user.id, str(test_post.id))
            with pytest.raises(DuplicateError):
                reservations.create_reservation(other_user.id, test_post.id)

    def test_signals(self, other_user, test_post):
        events = []

        def on_created(sender, reservation):
            events.append(('created', reservation.post_id))

        def on_cancelled(sender, reservation_id, post_id):
            events.append(('cancelled', post_id))

        with app.app_context(), reservation_created.connected_to(on_created), \
                reservation_cancelled.connected_to(on_cancelled):
            reservation = reservations.create_reservation(other_user.id, test_post.id)
            reservations.cancel_reservation(other_user.id, reservation.id)
        assert events == [('created', test_post.id), ('cancelled', test_post.id)]


@pytest.mark.integration
class TestListReservations:
    """Test GET /reservations"""

    def test_requires_login(self, client):
        assert client.get('/reservations').status_code == 401

    def test_lists_own_reservations_newest_first(self, reserver_client, other_user, make_post, test_user):
        soup = make_post(test_user, title='Soup')
        cake = make_post(test_user, title='Cake')
        _reserve(reserver_client, soup.id)
        _reserve(reserver_client, cake.id)

        response = reserver_client.get('/reservations')
        assert response.status_code == 200
        rows = response.get_json()['reservations']
        assert [r['posts']['title'] for r in rows] == ['Cake', 'Soup']
        assert rows[0]['status'] == 'reserved'
        assert rows[0]['posts']['quantity_left'] == 4
        assert rows[0]['posts']['total_quantity'] == 5
        assert set(rows[0]['posts']) >= {
            'id', 'title', 'description', 'quantity_left', 'total_quantity', 'created_at',
            'image_path', 'location', 'start_time', 'end_time'
        }

    def test_other_users_reservations_hidden(self, client, make_user, test_post):
        alice = make_user('alice@example.com')
        bob = make_user('bob@example.com')
        _reserve(login(client, alice), test_post.id)

        response = login(client, bob).get('/reservations')
        assert response.get_json()['reservations'] == []

    def test_list_is_repeatable(self, reserver_client, test_post):
        _reserve(reserver_client, test_post.id)
        first = reserver_client.get('/reservations').get_json()
        second = reserver_client.get('/reservations').get_json()
        assert first == second


@pytest.mark.integration
class TestCancelReservation:
    """Test DELETE /reservations"""

    def test_requires_id(self, reserver_client):
        response = reserver_client.delete('/reservations')
        assert response.status_code == 400
        assert response.get_json()['error'] == 'reservation id is required'

    def test_cancel_restores_quantity(self, reserver_client, test_post):
        reservation = _reserve(reserver_client, test_post.id).get_json()['reservation']
        assert fetch_post(test_post.id).quantity_left == 4

        response = reserver_client.delete(f"/reservations?id={reservation['id']}")
        assert response.status_code == 200
        assert response.get_json()['message'] == 'Reservation cancelled'
        assert fetch_post(test_post.id).quantity_left == 5
        assert count_reservations(id=reservation['id']) == 0

    def test_cannot_cancel_someone_elses_reservation(self, client, make_user, test_post):
        alice = make_user('alice@example.com')
        mallory = make_user('mallory@example.com')
        reservation = _reserve(login(client, alice), test_post.id).get_json()['reservation']

        response = login(client, mallory).delete(f"/reservations?id={reservation['id']}")
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Reservation not found'
        assert count_reservations(id=reservation['id']) == 1
        assert fetch_post(test_post.id).quantity_left == 4

    def test_reserve_cancel_reserve_round_trip(self, reserver_client, test_post):
        before = fetch_post(test_post.id).quantity_left
        reservation = _reserve(reserver_client, test_post.id).get_json()['reservation']
        reserver_client.delete(f"/reservations?id={reservation['id']}")
        assert fetch_post(test_post.id).quantity_left == before

        response = _reserve(reserver_client, test_post.id)
        assert response.status_code == 200
        assert fetch_post(test_post.id).quantity_left == before - 1

    def test_cancel_when_post_is_full_keeps_bound(self, other_user, make_post, test_user):
        """Increment never lifts quantity_left above the total"""
        post = make_post(test_user, quantity=2, quantity_left=2)
        with app.app_context():
            reservation = Reservation(user_id=other_user.id, post_id=post.id)
            db.session.add(reservation)
            db.session.commit()
            reservations.cancel_reservation(other_user.id, reservation.id)
        assert fetch_post(post.id).quantity_left == 2

    def test_cancel_unknown(self, reserver_client):
        assert reserver_client.delete('/reservations?id=424242').status_code == 404


@pytest.mark.integration
class TestQuantityScenarios:
    """End-to-end quantity bookkeeping across owners and reservers"""

    def test_reserve_cancel_and_edit(self, client, make_user, test_user):
        # Owner posts 5 units
        post = login(client, test_user).post('/posts', data=post_form(quantity='5')).get_json()['post']
        assert post['quantity_left'] == 5

        # Three distinct users reserve
        eaters = [make_user(f'eater{i}@example.com') for i in range(3)]
        reservation_ids = []
        for eater in eaters:
            response = _reserve(login(client, eater), post['id'])
            reservation_ids.append(response.get_json()['reservation']['id'])
        assert fetch_post(post['id']).quantity_left == 2
        assert count_reservations(post_id=post['id']) == 3

        # One cancels
        login(client, eaters[0]).delete(f'/reservations?id={reservation_ids[0]}')
        assert fetch_post(post['id']).quantity_left == 3

        # Owner lowers supply 5 -> 3
        response = login(client, test_user).put('/posts', data=post_form(id=str(post['id']), quantity='3'))
        assert response.status_code == 200
        updated = fetch_post(post['id'])
        assert updated.total_quantity == 3
        assert updated.quantity_left == 1

    def test_fourth_user_finds_it_exhausted(self, client, make_user, make_post, test_user):
        post = make_post(test_user, quantity=3)
        eaters = [make_user(f'eater{i}@example.com') for i in range(4)]
        for eater in eaters[:3]:
            assert _reserve(login(client, eater), post.id).status_code == 200
        assert fetch_post(post.id).quantity_left == 0

        response = _reserve(login(client, eaters[3]), post.id)
        assert response.status_code == 400
        assert 'no longer available' in response.get_json()['error']
        assert count_reservations(post_id=post.id) == 3
        assert fetch_post(post.id).quantity_left == 0

    def test_quantity_left_stays_within_bounds(self, client, make_user, make_post, test_user):
        post = make_post(test_user, quantity=2)
        eaters = [make_user(f'eater{i}@example.com') for i in range(3)]
        ids = []
        for eater in eaters:
            response = _reserve(login(client, eater), post.id)
            if response.status_code == 200:
                ids.append((eater, response.get_json()['reservation']['id']))
            current = fetch_post(post.id)
            assert 0 <= current.quantity_left <= current.total_quantity
        for eater, reservation_id in ids:
            login(client, eater).delete(f'/reservations?id={reservation_id}')
            current = fetch_post(post.id)
            assert 0 <= current.quantity_left <= current.total_quantity
        assert fetch_post(post.id).quantity_left == 2
