import pytest

from database import DELETED_USER_ID
from notifications import NotificationDispatcher
from realtime import ConnectionRegistry
from schemas import NotificationType


class FakeConnection:
    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)


@pytest.fixture
def conns():
    return FakeConnection(), FakeConnection(), FakeConnection()


class TestConnectionRegistry:
    def test_push_reaches_joined_user(self, conns):
        registry = ConnectionRegistry()
        registry.join('u1', conns[0])

        assert registry.push('u1', 'notification', {'message': 'hi'}) is True
        assert conns[0].sent == [{'event': 'notification', 'data': {'message': 'hi'}}]

    def test_push_to_offline_user_is_dropped(self):
        registry = ConnectionRegistry()

        assert registry.push('nobody', 'notification', {}) is False
        assert 'nobody' not in registry

    def test_last_connect_wins(self, conns):
        registry = ConnectionRegistry()
        registry.join('u1', conns[0])
        registry.join('u1', conns[1])

        registry.push('u1', 'notification', 1)

        assert conns[0].sent == []
        assert len(conns[1].sent) == 1
        assert len(registry) == 1

    def test_stale_disconnect_keeps_newer_connection(self, conns):
        registry = ConnectionRegistry()
        registry.join('u1', conns[0])
        registry.join('u1', conns[1])

        assert registry.leave(conns[0]) is None
        assert registry.get('u1') is conns[1]
        assert registry.leave(conns[1]) == 'u1'
        assert 'u1' not in registry

    def test_rejoin_as_another_user_moves_the_handle(self, conns):
        registry = ConnectionRegistry()
        registry.join('u1', conns[0])
        registry.join('u2', conns[0])

        assert registry.push('u1', 'notification', {'message': 'for u1'}) is False
        assert conns[0].sent == []
        assert 'u1' not in registry
        assert registry.get('u2') is conns[0]

        assert registry.leave(conns[0]) == 'u2'
        assert len(registry) == 0

    def test_broadcast_skips_sender(self, conns):
        registry = ConnectionRegistry()
        registry.attach(conns[0])
        registry.join('u1', conns[1])
        registry.join('u2', conns[2])

        delivered = registry.broadcast('new_post', {'title': 'x'}, exclude=conns[2])

        assert delivered == 2
        assert conns[0].sent == conns[1].sent == [{'event': 'new_post', 'data': {'title': 'x'}}]
        assert conns[2].sent == []


def test_dispatcher_persists_and_pushes(db, student, other_student, conns):
    registry = ConnectionRegistry()
    registry.join(str(student['_id']), conns[0])
    dispatcher = NotificationDispatcher(db, registry)

    payload = dispatcher.create(
        recipient=student['_id'],
        sender=other_student['_id'],
        type=NotificationType.UPVOTE,
        message=f"{other_student['name']} upvoted your post",
    )

    assert db['notification'].count_documents({'recipient': student['_id']}) == 1
    assert conns[0].sent == [{'event': 'notification', 'data': payload}]
    assert payload['sender']['name'] == other_student['name']
    assert payload['recipient'] == str(student['_id'])


def test_dispatcher_without_connection_still_persists(db, student):
    dispatcher = NotificationDispatcher(db, ConnectionRegistry())

    dispatcher.create(recipient=student['_id'], type=NotificationType.COMMENT, message='Someone commented on your post')

    assert db['notification'].count_documents({}) == 1


def test_dispatcher_skips_deleted_user_placeholder(db, conns):
    registry = ConnectionRegistry()
    registry.join(str(DELETED_USER_ID), conns[0])
    dispatcher = NotificationDispatcher(db, registry)

    payload = dispatcher.create(recipient=DELETED_USER_ID, type=NotificationType.UPVOTE, message='Someone upvoted your post')

    assert payload is None
    assert db['notification'].count_documents({}) == 0
    assert conns[0].sent == []


class TestSocket:
    def test_join_is_acknowledged(self, client, registry, student):
        with client.websocket_connect('/ws') as ws:
            ws.send_json({'event': 'join', 'user_id': str(student['_id'])})

            assert ws.receive_json() == {'event': 'joined', 'user_id': str(student['_id'])}
            assert str(student['_id']) in registry

        assert str(student['_id']) not in registry

    def test_join_requires_user_id(self, client):
        with client.websocket_connect('/ws') as ws:
            ws.send_json({'event': 'join'})

            assert ws.receive_json() == {'event': 'error', 'message': 'user_id is required'}

    def test_bad_messages_get_error_events(self, client):
        with client.websocket_connect('/ws') as ws:
            ws.send_text('not json')
            assert ws.receive_json()['message'] == 'Invalid JSON'

            ws.send_json({'event': 'dance'})
            assert ws.receive_json() == {'event': 'error', 'message': 'Unknown event: dance'}

    def test_upvote_pushes_live_notification(self, client, student, other_headers, student_post):
        with client.websocket_connect('/ws') as ws:
            ws.send_json({'event': 'join', 'user_id': str(student['_id'])})
            ws.receive_json()

            client.post(f"/api/posts/{student_post['id']}/upvote", headers=other_headers)

            message = ws.receive_json()
            assert message['event'] == 'notification'
            assert message['data']['type'] == 'upvote'
            assert message['data']['post']['title'] == 'Lost my calculator'

    def test_new_post_rebroadcast_to_others(self, client, student, other_student):
        with client.websocket_connect('/ws') as sender, client.websocket_connect('/ws') as listener:
            listener.send_json({'event': 'join', 'user_id': str(other_student['_id'])})
            listener.receive_json()

            sender.send_json({'event': 'new_post', 'data': {'title': 'Fest tonight'}})

            assert listener.receive_json() == {'event': 'new_post', 'data': {'title': 'Fest tonight'}}
