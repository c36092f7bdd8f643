from bson import ObjectId

from notifications import NotificationDispatcher
from realtime import ConnectionRegistry


def _upvote(client, post, headers):
    return client.post(f"/api/posts/{post['id']}/upvote", headers=headers)


def test_list_is_scoped_to_recipient(client, student_headers, other_headers, faculty_headers, student_post):
    _upvote(client, student_post, other_headers)
    _upvote(client, student_post, faculty_headers)

    mine = client.get('/api/notifications', headers=student_headers).json()
    theirs = client.get('/api/notifications', headers=other_headers).json()

    assert len(mine['data']) == 2
    assert mine['unread_count'] == 2
    assert mine['pagination']['total'] == 2
    assert theirs['data'] == []
    assert theirs['unread_count'] == 0


def test_list_populates_sender_and_post(client, other_student, student_headers, other_headers, student_post):
    _upvote(client, student_post, other_headers)

    note = client.get('/api/notifications', headers=student_headers).json()['data'][0]

    assert note['sender']['name'] == other_student['name']
    assert note['post']['title'] == 'Lost my calculator'
    assert note['is_read'] is False


def test_list_requires_auth(client):
    assert client.get('/api/notifications').status_code == 401


def test_mark_read_and_filter(client, student_headers, other_headers, faculty_headers, student_post):
    _upvote(client, student_post, other_headers)
    _upvote(client, student_post, faculty_headers)
    first = client.get('/api/notifications', headers=student_headers).json()['data'][0]

    response = client.put(f"/api/notifications/{first['id']}/read", headers=student_headers)

    assert response.status_code == 200
    assert response.json()['data']['is_read'] is True
    unread = client.get('/api/notifications', headers=student_headers, params={'is_read': 'false'}).json()
    assert len(unread['data']) == 1
    assert unread['unread_count'] == 1
    read = client.get('/api/notifications', headers=student_headers, params={'is_read': 'true'}).json()
    assert [n['id'] for n in read['data']] == [first['id']]


def test_cannot_touch_someone_elses_notification(client, student_headers, other_headers, student_post):
    _upvote(client, student_post, other_headers)
    note = client.get('/api/notifications', headers=student_headers).json()['data'][0]

    assert client.put(f"/api/notifications/{note['id']}/read", headers=other_headers).status_code == 404
    assert client.delete(f"/api/notifications/{note['id']}", headers=other_headers).status_code == 404
    assert client.get('/api/notifications', headers=student_headers).json()['unread_count'] == 1


def test_malformed_notification_id(client, student_headers):
    response = client.put('/api/notifications/not-an-id/read', headers=student_headers)

    assert response.status_code == 404
    assert response.json() == {'success': False, 'message': 'Notification not found'}


def test_mark_all_read(client, student_headers, other_headers, faculty_headers, student_post):
    _upvote(client, student_post, other_headers)
    _upvote(client, student_post, faculty_headers)

    response = client.put('/api/notifications/read-all', headers=student_headers)

    assert response.status_code == 200
    assert response.json()['modified'] == 2
    assert client.get('/api/notifications', headers=student_headers).json()['unread_count'] == 0


def test_mark_all_read_with_nothing_unread(client, other_headers):
    response = client.put('/api/notifications/read-all', headers=other_headers)

    assert response.status_code == 200
    assert response.json()['success'] is True
    assert response.json()['modified'] == 0


def test_delete_notification(client, db, student_headers, other_headers, student_post):
    _upvote(client, student_post, other_headers)
    note = client.get('/api/notifications', headers=student_headers).json()['data'][0]

    assert client.delete(f"/api/notifications/{note['id']}", headers=student_headers).status_code == 200
    assert db['notification'].count_documents({}) == 0
    assert client.delete(f"/api/notifications/{note['id']}", headers=student_headers).status_code == 404
    assert client.delete(f'/api/notifications/{ObjectId()}', headers=student_headers).status_code == 404


def test_pagination_newest_first(client, db, student, student_headers):
    dispatcher = NotificationDispatcher(db, ConnectionRegistry())
    for i in range(3):
        dispatcher.create(student['_id'], 'comment', f'note {i}')

    body = client.get('/api/notifications', headers=student_headers, params={'limit': 2}).json()

    assert [n['message'] for n in body['data']] == ['note 2', 'note 1']
    assert body['pagination'] == {'page': 1, 'limit': 2, 'total': 3, 'pages': 2}
