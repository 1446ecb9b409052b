import random
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from scrabble_server.errors import PersistenceError
from scrabble_server.persistence import serializers
from scrabble_server.persistence.firestore import FirestoreGateway
from scrabble_server.persistence.memory import MemoryGateway
from scrabble_server.schemas import ChatMessage, Seat, TurnRecord
from scrabble_server.tiles import generate_initial_game_state


def nested_arrays(value):
    if isinstance(value, list):
        return any(isinstance(v, list) or nested_arrays(v) for v in value)
    if isinstance(value, dict):
        return any(nested_arrays(v) for v in value.values())
    return False


def played_state():
    state = generate_initial_game_state(random.Random(8))
    state.board[7][7] = state.playerRacks[0][0]
    state.board[7][8] = state.playerRacks[0][1]
    state.playerRacks[0][0] = state.playerRacks[0][1] = None
    state.playerNicknames = {0: 'Alice', 1: 'Bob'}
    return state


def chat(seen, text='hello', timestamp=1):
    return ChatMessage(id=f'm{timestamp}', gameId='s1', senderIndex=0, senderNickname='Alice',
                       text=text, timestamp=timestamp, seen=seen)


class TestSerializers:
    def test_state_document_is_firestore_safe(self):
        doc = serializers.game_state_to_document(played_state())
        assert not nested_arrays(doc)
        assert set(doc['playerRacks']) == {'0', '1'}
        assert {(c['x'], c['y']) for c in doc['board']} == {(7, 7), (7, 8)}
        assert 'playerNicknames' not in doc

    def test_state_survives_the_store(self):
        state = played_state()
        restored = serializers.game_state_from_document(serializers.game_state_to_document(state))
        assert restored.board == state.board
        assert restored.playerRacks == state.playerRacks
        assert [t.id for t in restored.letterBag] == [t.id for t in state.letterBag]
        assert restored.playerNicknames == {}

    def test_roster_drops_connection_ids(self):
        seats = [Seat(userId='alice', playerIndex=0, nickname='Alice', socketId='sid-a', frozenElo=1600), None]
        doc = serializers.roster_to_document(seats)
        assert 'socketId' not in doc['players'][0]

        restored = serializers.roster_from_document(doc)
        assert restored[0].userId == 'alice'
        assert restored[0].frozenElo == 1600
        assert not restored[0].is_connected
        assert restored[1] is None

    def test_short_roster_is_padded(self):
        assert serializers.roster_from_document({'players': []}) == [None, None]

    def test_seen_map_keys_are_strings_in_the_store(self):
        doc = serializers.chat_to_document(chat({0: True, 1: False}))
        assert doc['seen'] == {'0': True, '1': False}
        assert serializers.chat_from_document(doc).seen == {0: True, 1: False}


class TestMemoryGateway:
    async def test_loads_return_copies(self):
        gateway = MemoryGateway()
        state = played_state()
        await gateway.save_session('s1', state)

        loaded = await gateway.load_session('s1')
        loaded.playerScores[0] = 99
        assert (await gateway.load_session('s1')).playerScores[0] == 0

    async def test_missing_session(self):
        gateway = MemoryGateway()
        assert await gateway.load_session('nope') is None
        assert await gateway.load_roster('nope') is None
        assert await gateway.load_chat_history('nope') == []

    async def test_mark_seen_only_touches_the_given_seat(self):
        gateway = MemoryGateway()
        await gateway.append_chat_message('s1', chat({0: True, 1: False}, timestamp=1))
        await gateway.append_chat_message('s1', chat({0: False, 1: True}, timestamp=2))

        assert await gateway.mark_chat_seen('s1', 1) == 1
        history = await gateway.load_chat_history('s1')
        assert [m.seen for m in history] == [{0: True, 1: True}, {0: False, 1: True}]

    async def test_chat_history_is_ordered_by_time(self):
        gateway = MemoryGateway()
        await gateway.append_chat_message('s1', chat({}, text='later', timestamp=5))
        await gateway.append_chat_message('s1', chat({}, text='earlier', timestamp=2))
        assert [m.text for m in await gateway.load_chat_history('s1')] == ['earlier', 'later']

    async def test_delete_keeps_the_turn_log(self):
        gateway = MemoryGateway()
        await gateway.save_session('s1', played_state())
        await gateway.save_roster('s1', [None, None])
        await gateway.append_chat_message('s1', chat({}))
        await gateway.append_turn_log('s1', TurnRecord(userId='alice', playerIndex=0, turnNumber=1, timestamp=1))

        await gateway.delete_session('s1')
        assert 's1' not in gateway.states
        assert 's1' not in gateway.rosters
        assert await gateway.load_chat_history('s1') == []
        assert len(gateway.turns['s1']) == 1

    async def test_identity_defaults(self):
        gateway = MemoryGateway()
        identity = await gateway.load_identity('stranger')
        assert identity.displayName == 'stranger'
        assert identity.rating == 1600
        assert identity.gamesPlayed == 0

    async def test_record_rating_counts_the_game(self):
        gateway = MemoryGateway(users={'alice': {'nickname': 'Alice', 'elo': 1600, 'gamesPlayed': 3}})
        await gateway.record_rating('alice', 1625)
        identity = await gateway.load_identity('alice')
        assert (identity.displayName, identity.rating, identity.gamesPlayed) == ('Alice', 1625, 4)


class TestFirestoreGateway:
    @pytest.fixture
    def db(self):
        return MagicMock()

    @pytest.fixture
    def gateway(self, db):
        return FirestoreGateway(db)

    async def test_identity_of_unknown_user(self, db, gateway):
        db.collection.return_value.document.return_value.get.return_value.exists = False
        identity = await gateway.load_identity('ghost')
        assert identity.displayName == 'ghost'
        assert identity.rating == 1600
        db.collection.assert_called_with('users')

    async def test_record_rating_merges_and_increments(self, db, gateway):
        await gateway.record_rating('alice', 1625)
        ref = db.collection.return_value.document.return_value
        args, kwargs = ref.set.call_args
        assert args[0]['elo'] == 1625
        assert 'gamesPlayed' in args[0]
        assert kwargs == {'merge': True}

    async def test_save_session_writes_the_state_document(self, db, gateway):
        await gateway.save_session('s1', played_state())
        game = db.collection.return_value.document.return_value
        game.collection.assert_called_with('gameStates')
        doc = game.collection.return_value.document.return_value.set.call_args[0][0]
        assert not nested_arrays(doc)

    async def test_mark_seen_batches_only_unseen_messages(self, db, gateway):
        unseen, seen = MagicMock(), MagicMock()
        unseen.to_dict.return_value = {'seen': {'0': True, '1': False}}
        seen.to_dict.return_value = {'seen': {'0': True, '1': True}}
        chats = db.collection.return_value.document.return_value.collection.return_value
        chats.stream.return_value = [unseen, seen]

        assert await gateway.mark_chat_seen('s1', 1) == 1
        batch = db.batch.return_value
        batch.update.assert_called_once_with(unseen.reference, {'seen': {'0': True, '1': True}})
        batch.commit.assert_called_once()

    async def test_api_errors_become_persistence_errors(self, db, gateway):
        db.collection.return_value.document.return_value.get.side_effect = google_exceptions.ServiceUnavailable('down')
        with pytest.raises(PersistenceError):
            await gateway.load_identity('alice')
