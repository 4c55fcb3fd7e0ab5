import pytest

from trivia import db
from trivia.errors import AlreadyAnswered, EmptyPack, InvalidState, NotFound, PlayerNotFound, Unauthorized
from trivia.models import Answer, GameSession, Player, QuestionPack

HOST = 'host-123'


def _types(events):
    return [e.type for e in events]


@pytest.fixture()
def playing(engine, make_session):
    """A started two-player session on question 1."""
    make_session(players=('Alice', 'Bob'))
    engine.start('TEST01', HOST)
    return GameSession.by_code('TEST01')


def test_start_arms_question_timer(engine, make_session, questions, events):
    make_session(players=('Alice',))
    result = engine.start('test01', HOST)
    assert result['session']['status'] == 'playing'
    handle = engine.timers.pending('TEST01')
    assert handle.kind == 'timeout'
    assert handle.duration == questions[0].time_limit
    assert _types(events) == ['game_started']
    started = events[0].to_dict()
    assert started['session_code'] == 'TEST01'
    assert started['data']['question_count'] == 3
    assert 'correct_answer_index' not in started['data']['first_question']


def test_start_checks_host_before_state(engine, make_session, questions):
    make_session(status='playing', current_question_id=questions[0].id)
    with pytest.raises(Unauthorized):
        engine.start('TEST01', 'someone-else')
    with pytest.raises(InvalidState):
        engine.start('TEST01', HOST)


def test_start_with_empty_pack(engine):
    empty = QuestionPack(name='Empty', description='', difficulty='easy', category='general', question_count=0)
    db.session.add(empty)
    db.session.commit()
    db.session.add(GameSession(code='EMPTY1', host_device_id=HOST, question_pack_id=empty.id))
    db.session.commit()
    with pytest.raises(EmptyPack):
        engine.start('EMPTY1', HOST)
    assert GameSession.by_code('EMPTY1').status == 'waiting'


def test_unknown_session(engine, pack):
    with pytest.raises(NotFound):
        engine.start('NOPE00', HOST)


def test_status_never_moves_backwards(engine, playing):
    with pytest.raises(InvalidState):
        engine.start('TEST01', HOST)
    for _ in range(3):
        engine.next_question('TEST01', HOST)
    assert GameSession.by_code('TEST01').status == 'finished'
    with pytest.raises(InvalidState):
        engine.start('TEST01', HOST)
    with pytest.raises(InvalidState):
        engine.next_question('TEST01', HOST)


def test_partial_answers_keep_timeout(engine, playing, events):
    result = engine.submit_answer('TEST01', 'device-1', 0)
    assert result['all_answered'] is False
    assert engine.timers.pending('TEST01').kind == 'timeout'
    assert _types(events) == ['answer_submitted']
    assert events[0].data.answered_count == 1
    assert events[0].data.total_players == 2


def test_all_answered_early_waits_for_minimum_reveal_delay(engine, playing, questions, events):
    engine.clock = lambda: engine.runtime('TEST01').started_at + 1
    engine.submit_answer('TEST01', 'device-1', 0)
    engine.submit_answer('TEST01', 'device-2', 3)
    handle = engine.timers.pending('TEST01')
    assert handle.kind == 'reveal'
    assert handle.duration == pytest.approx(4)
    assert _types(events) == ['answer_submitted', 'answer_submitted']
    assert events[-1].data.all_answered is True

    assert engine.timers.expire('TEST01') is True
    assert _types(events)[2:] == ['answer_revealed', 'question_completed']
    revealed = events[2].data
    assert revealed.auto_revealed is True
    assert revealed.correct_answer_index == 0
    completed = events[3].data
    assert completed.correct_answer == 'A'
    assert completed.timeout_players is None
    assert {s['nickname']: s['score'] for s in completed.scores} == {'Alice': 100, 'Bob': 0}


def test_all_answered_late_reveals_immediately(engine, playing, events):
    engine.clock = lambda: engine.runtime('TEST01').started_at + 10
    engine.submit_answer('TEST01', 'device-1', 1)
    engine.submit_answer('TEST01', 'device-2', 0)
    assert not engine.timers.is_armed('TEST01')
    assert _types(events) == ['answer_submitted', 'answer_submitted', 'answer_revealed', 'question_completed']


def test_answers_closed_after_reveal(engine, playing):
    engine.reveal_answer('TEST01', HOST)
    with pytest.raises(InvalidState):
        engine.submit_answer('TEST01', 'device-1', 0)
    assert Answer.query.count() == 0


def test_resubmit_after_auto_reveal_is_duplicate(engine, make_session):
    make_session(players=('Alice',))
    engine.start('TEST01', HOST)
    engine.clock = lambda: engine.runtime('TEST01').started_at + 10
    engine.submit_answer('TEST01', 'device-1', 0)
    assert engine.runtime('TEST01').completed is True
    with pytest.raises(AlreadyAnswered):
        engine.submit_answer('TEST01', 'device-1', 0)
    assert Player.query.filter_by(device_id='device-1').first().score == 100


def test_submit_after_timeout_is_duplicate(engine, playing):
    engine.timers.expire('TEST01')
    with pytest.raises(AlreadyAnswered):
        engine.submit_answer('TEST01', 'device-2', 0)
    assert Player.query.filter_by(device_id='device-2').first().score == 0


def test_manual_reveal(engine, playing, events):
    engine.submit_answer('TEST01', 'device-1', 0)
    status = engine.reveal_answer('TEST01', HOST)
    assert status['correct_answer_index'] == 0
    assert status['revealed'] is True
    assert status['answered_count'] == 1
    assert not engine.timers.is_armed('TEST01')
    assert _types(events) == ['answer_submitted', 'answer_revealed', 'question_completed']
    assert events[1].data.auto_revealed is False
    # Revealing again does not repeat the broadcasts
    engine.reveal_answer('TEST01', HOST)
    assert len(events) == 3


def test_timeout_fills_stragglers(engine, playing, questions, events):
    engine.submit_answer('TEST01', 'device-1', 0)
    assert engine.timers.expire('TEST01') is True

    bob = Player.query.filter_by(device_id='device-2').first()
    synthetic = Answer.query.filter_by(player_id=bob.id, question_id=questions[0].id).one()
    assert synthetic.selected_option_index == -1
    assert synthetic.is_correct is False
    assert synthetic.points_earned == 0
    assert bob.score == 0

    assert _types(events) == [
        'answer_submitted', 'answer_submitted', 'answer_revealed', 'question_completed',
    ]
    filler = events[1].data
    assert filler.player_id == bob.id
    assert filler.answered_count == 2
    assert filler.all_answered is True
    assert events[3].data.timeout_players == [bob.id]
    assert events[2].data.auto_revealed is True


def test_timeout_is_idempotent(engine, playing, questions, events):
    assert engine.handle_timeout('TEST01', questions[0].id) is True
    assert engine.handle_timeout('TEST01', questions[0].id) is False
    assert Answer.query.count() == 2
    assert _types(events).count('question_completed') == 1


def test_stale_timeout_is_ignored(engine, playing, questions, events):
    engine.next_question('TEST01', HOST)
    events.clear()
    assert engine.handle_timeout('TEST01', questions[0].id) is False
    assert events == []
    assert Answer.query.count() == 0


def test_next_question_rearms_timer(engine, playing, questions, events):
    first_handle = engine.timers.pending('TEST01')
    result = engine.next_question('TEST01', HOST)
    assert result['has_next'] is True
    assert first_handle.cancelled is True
    assert engine.timers.pending('TEST01') is not first_handle
    assert engine.runtime('TEST01').question_id == questions[1].id
    revealed = [e for e in events if e.type == 'question_revealed']
    assert [e.data.correct_answer for e in revealed] == [None, 'B']


def test_game_finished_rankings(engine, playing, events):
    engine.submit_answer('TEST01', 'device-2', 0)
    engine.next_question('TEST01', HOST)
    engine.submit_answer('TEST01', 'device-1', 1)
    engine.submit_answer('TEST01', 'device-2', 1)
    engine.next_question('TEST01', HOST)
    result = engine.next_question('TEST01', HOST)
    assert result['has_next'] is False
    finished = [e for e in events if e.type == 'game_finished'][0].data
    assert [(s['nickname'], s['total_score'], s['rank']) for s in finished.final_scores] == [
        ('Bob', 300, 1), ('Alice', 200, 2),
    ]
    assert finished.winner['nickname'] == 'Bob'
    assert result['winner'] == finished.winner
    assert not engine.timers.is_armed('TEST01')
    assert engine.runtime('TEST01') is None


def test_ties_go_to_earliest_joiner(engine, playing):
    engine.submit_answer('TEST01', 'device-2', 0)
    engine.submit_answer('TEST01', 'device-1', 0)
    scores = engine.get_scores('TEST01')['players']
    assert [s['nickname'] for s in scores] == ['Alice', 'Bob']
    assert [s['total_score'] for s in scores] == [100, 100]


def test_duplicate_submission_propagates(engine, playing):
    engine.submit_answer('TEST01', 'device-1', 1)
    with pytest.raises(AlreadyAnswered):
        engine.submit_answer('TEST01', 'device-1', 0)
    assert Player.query.filter_by(device_id='device-1').first().score == 0


def test_timer_callback_runs_engine_timeout(engine, playing, questions):
    engine.timers.expire('TEST01')
    assert engine.runtime('TEST01').completed is True
    assert Answer.query.filter_by(question_id=questions[0].id).count() == 2


def test_leave_completes_round_when_rest_answered(engine, playing, events):
    engine.clock = lambda: engine.runtime('TEST01').started_at + 10
    engine.submit_answer('TEST01', 'device-1', 0)
    bob = Player.query.filter_by(device_id='device-2').first()
    engine.leave(bob.id)
    assert _types(events) == [
        'answer_submitted', 'player_left', 'answer_revealed', 'question_completed',
    ]
    assert not engine.timers.is_armed('TEST01')
    assert engine.runtime('TEST01').completed is True


def test_early_leave_arms_reveal_delay(engine, playing, events):
    engine.clock = lambda: engine.runtime('TEST01').started_at + 2
    engine.submit_answer('TEST01', 'device-1', 0)
    engine.leave(Player.query.filter_by(device_id='device-2').first().id)
    assert engine.timers.pending('TEST01').kind == 'reveal'
    assert _types(events) == ['answer_submitted', 'player_left']


def test_leave_with_stragglers_keeps_timeout(engine, make_session, events):
    make_session(players=('Alice', 'Bob', 'Cara'))
    engine.start('TEST01', HOST)
    engine.submit_answer('TEST01', 'device-1', 0)
    engine.leave(Player.query.filter_by(device_id='device-2').first().id)
    assert engine.timers.pending('TEST01').kind == 'timeout'
    assert 'answer_revealed' not in _types(events)


def test_leave_unknown_player(engine, playing):
    with pytest.raises(PlayerNotFound):
        engine.leave(9999)


def test_question_completed_sent_after_pause(engine, playing, events):
    tasks = []
    slept = []
    engine.reveal_pause = 0.5
    engine.start_task = lambda fn, *args: tasks.append((fn, args))
    engine.sleep = slept.append

    engine.reveal_answer('TEST01', HOST)
    assert _types(events) == ['answer_revealed']
    assert slept == []

    fn, args = tasks[0]
    fn(*args)
    assert slept == [0.5]
    assert _types(events) == ['answer_revealed', 'question_completed']


def test_finished_session_releases_lock(engine, playing):
    assert 'TEST01' in engine._locks
    for _ in range(3):
        engine.next_question('TEST01', HOST)
    assert 'TEST01' not in engine._locks
