import json
import threading

import pytest

from budget_planner.results import CORRUPT_SCENARIO, IO_ERROR, NOT_FOUND, VALIDATION_ERROR
from budget_planner.sandbox import SandboxSession
from budget_planner.temporal import PendingId, TEMPORAL_TABLES


@pytest.fixture
def seeded(seed_month):
    return seed_month('2026-03')


def _store_counts(store):
    return {table: len(store.query(table, include_deleted=True).data) for table in TEMPORAL_TABLES}


def test_bootstrap_copies_the_month(manager, seeded, recorded):
    result = manager.bootstrap()
    assert result.ok
    session = result.data
    assert session.month == '2026-03'
    assert list(session.collection('account')) == [seeded['account']['id']]
    assert len(session.buckets) == 5
    assert not manager.can_undo
    assert recorded[-1][0] == 'planning:data-loaded'


def test_get_session_bootstraps_lazily(manager, seeded):
    session = manager.get_session().data
    assert session.get('goal', seeded['goal']['id'])['name'] == 'Emergency fund'


def test_create_assigns_pending_ids(manager, seeded, recorded):
    first = manager.create('account', {'bank_name': 'New Bank', 'account_type': 'savings', 'starting_balance': 50.0})
    second = manager.create('goal', {'name': 'Car', 'target_amount': 4000.0, 'target_date': '2027-01-01'})
    assert first.ok and second.ok
    assert first.data['id'] == PendingId(1)
    assert second.data['id'] == PendingId(2)
    assert first.data['effective_from'] == '2026-03-01'
    assert first.data['is_deleted'] == 0

    changed = [payload for name, payload in recorded if name == 'planning:session-changed']
    assert changed[-1] == {'action': 'create', 'kind': 'goal', 'id': PendingId(2)}


def test_create_encodes_date_lists(manager, seeded):
    source = manager.create('income_source', {
        'source_name': 'Side gig',
        'income_type': '1099',
        'amount': 120.0,
        'account_id': seeded['account']['id'],
        'pay_dates': ['2026-03-10'],
    }).data
    assert source['pay_dates'] == '["2026-03-10"]'


def test_sandbox_never_writes_budget_tables(manager, store, seeded):
    before = _store_counts(store)
    account_id = seeded['account']['id']
    manager.create('account', {'bank_name': 'New Bank', 'account_type': 'savings', 'starting_balance': 50.0})
    manager.update('account', account_id, {'starting_balance': 9999.0})
    manager.delete('goal', seeded['goal']['id'])
    assert _store_counts(store) == before
    assert store.get_by_id('accounts', account_id).data['starting_balance'] == 1000.0
    assert store.get_by_id('goals', seeded['goal']['id']).ok


def test_returned_sessions_are_copies(manager, seeded):
    session = manager.get_session().data
    session.collection('account')[seeded['account']['id']]['starting_balance'] = -1.0
    fetched = manager.get('account', seeded['account']['id']).data
    assert fetched['starting_balance'] == 1000.0


def test_delete_is_soft_and_hidden_from_lists(manager, seeded):
    goal_id = seeded['goal']['id']
    assert manager.delete('goal', goal_id).data == {'id': goal_id, 'deleted': True}
    assert manager.list('goal').data == []
    hidden = manager.list('goal', include_deleted=True).data
    assert hidden[0]['is_deleted'] == 1


def test_missing_entities_are_not_found(manager, seeded):
    assert manager.update('account', 999, {'bank_name': 'X'}).code == NOT_FOUND
    assert manager.delete('account', PendingId(42)).code == NOT_FOUND
    assert manager.get('goal', 999).code == NOT_FOUND
    assert not manager.can_undo


def test_unknown_kinds_are_validation_errors(manager, seeded):
    assert manager.create('transaction', {}).code == VALIDATION_ERROR
    assert manager.update('bucket', 1, {'name': 'X'}).code == VALIDATION_ERROR
    assert manager.delete('widget', 1).code == VALIDATION_ERROR
    assert manager.get('widget', 1).code == VALIDATION_ERROR
    assert manager.list('widget').code == VALIDATION_ERROR
    assert not manager.can_undo


def test_undo_and_redo_walk_the_history(manager, seeded):
    account_id = seeded['account']['id']
    original = manager.get_session().data
    manager.update('account', account_id, {'starting_balance': 10.0})
    manager.update('account', account_id, {'starting_balance': 20.0})

    undone = manager.undo().data
    assert undone.get('account', account_id)['starting_balance'] == 10.0
    assert manager.can_redo

    manager.undo()
    assert manager.get('account', account_id).data['starting_balance'] == 1000.0
    assert manager.get_session().data == original
    assert not manager.can_undo

    redone = manager.redo().data
    assert redone.get('account', account_id)['starting_balance'] == 10.0
    manager.redo()
    assert manager.get('account', account_id).data['starting_balance'] == 20.0
    assert not manager.can_redo


def test_new_edit_clears_redo(manager, seeded):
    account_id = seeded['account']['id']
    manager.update('account', account_id, {'starting_balance': 10.0})
    manager.undo()
    assert manager.can_redo
    manager.update('account', account_id, {'starting_balance': 30.0})
    assert not manager.can_redo


def test_undo_with_empty_history_is_a_no_op(manager, seeded):
    before = manager.get_session().data
    result = manager.undo()
    assert result.ok
    assert result.data == before
    assert manager.redo().data == before


def test_reset_discards_edits(manager, seeded, recorded):
    manager.create('goal', {'name': 'Car', 'target_amount': 4000.0, 'target_date': '2027-01-01'})
    reset = manager.reset()
    assert reset.ok
    assert [g['name'] for g in reset.data.entities('goal')] == ['Emergency fund']
    assert recorded[-1][0] == 'planning:reset'


def test_project_uses_session_entities(manager, seeded):
    account_id = seeded['account']['id']
    projections = manager.project().data
    assert projections[account_id].ending_balance == pytest.approx(1000.0 + 800.0 - 300.0)

    manager.update('income_source', seeded['income_source']['id'], {'amount': 500.0})
    projections = manager.project('2026-03-01', '2026-03-10').data
    assert len(projections[account_id].points) == 10
    assert projections[account_id].ending_balance == pytest.approx(1000.0 + 500.0 - 300.0)


def test_create_rejects_incomplete_entities(manager, seeded):
    result = manager.create('income_source', {
        'source_name': 'Bonus',
        'income_type': 'w2',
        'account_id': seeded['account']['id'],
        'pay_dates': ['2026-03-20'],
    })
    assert result.code == VALIDATION_ERROR
    assert 'amount' in result.error.message
    assert not manager.can_undo
    assert len(manager.list('income_source').data) == 1
    assert manager.project().ok


def test_update_rejects_invalid_merge(manager, seeded):
    expense_id = seeded['planned_expense']['id']
    result = manager.update('planned_expense', expense_id, {'amount': None})
    assert result.code == VALIDATION_ERROR
    assert manager.get('planned_expense', expense_id).data['amount'] == 300.0
    assert not manager.can_undo
    assert manager.project().ok


def test_pending_ids_are_valid_references(manager, seeded):
    account = manager.create('account', {'bank_name': 'New Bank', 'account_type': 'savings', 'starting_balance': 50.0})
    source = manager.create('income_source', {
        'source_name': 'Side gig',
        'income_type': '1099',
        'amount': 120.0,
        'account_id': account.data['id'],
        'pay_dates': ['2026-03-10'],
    })
    assert source.ok
    assert source.data['account_id'] == PendingId(1)

    projections = manager.project().data
    assert projections[PendingId(1)].ending_balance == pytest.approx(170.0)


def test_effective_from_is_fixed_after_create(manager, seeded):
    account_id = seeded['account']['id']
    result = manager.update('account', account_id, {'effective_from': '1999-01-01'})
    assert result.code == VALIDATION_ERROR
    assert manager.get('account', account_id).data['effective_from'] == '2026-03-01'
    assert not manager.can_undo


def test_concurrent_creates_are_serialised(manager, seeded):
    original = manager.get_session().data

    def add_goals(worker):
        for n in range(50):
            manager.create('goal', {'name': f'w{worker}-{n}', 'target_amount': 100.0, 'target_date': '2027-01-01'})

    threads = [threading.Thread(target=add_goals, args=(worker,)) for worker in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    session = manager.get_session().data
    pending = [goal['id'] for goal in session.entities('goal') if isinstance(goal['id'], PendingId)]
    assert len(set(pending)) == 200
    assert session.next_local_id == 201

    for _ in range(200):
        assert manager.undo().ok
    assert not manager.can_undo
    assert manager.get_session().data == original


def test_undo_and_redo_mixed_edits(manager, seeded):
    account_id = seeded['account']['id']
    goal_id = seeded['goal']['id']
    created = manager.create('goal', {'name': 'Car', 'target_amount': 4000.0, 'target_date': '2027-01-01'}).data
    manager.delete('goal', goal_id)
    manager.update('account', account_id, {'starting_balance': 5.0})

    for _ in range(3):
        manager.undo()
    assert manager.get('goal', created['id']).code == NOT_FOUND
    assert manager.get('goal', goal_id).data['is_deleted'] == 0
    assert manager.get('account', account_id).data['starting_balance'] == 1000.0
    assert not manager.can_undo

    for _ in range(3):
        manager.redo()
    assert manager.get('goal', created['id']).data['name'] == 'Car'
    assert manager.get('goal', goal_id).data['is_deleted'] == 1
    assert manager.get('account', account_id).data['starting_balance'] == 5.0
    assert not manager.can_redo


def test_scenarios_round_trip_with_pending_ids(manager, seeded, recorded):
    manager.create('goal', {'name': 'Car', 'target_amount': 4000.0, 'target_date': '2027-01-01'})
    saved_session = manager.get_session().data
    saved = manager.save_scenario('Buy a car')
    assert saved.ok
    assert recorded[-1][0] == 'planning:scenario-saved'

    manager.reset()
    loaded = manager.load_scenario(saved.data['id'])
    assert loaded.ok
    assert loaded.data == saved_session
    assert loaded.data.get('goal', PendingId(1))['name'] == 'Car'
    assert not manager.can_undo and not manager.can_redo

    created = manager.create('goal', {'name': 'Boat', 'target_amount': 1.0, 'target_date': '2027-01-01'})
    assert created.data['id'] == PendingId(2)


def test_list_and_delete_scenarios(manager, seeded, clock):
    first = manager.save_scenario('First').data
    clock.advance(minutes=5)
    second = manager.save_scenario('Second').data

    listed = manager.list_scenarios().data
    assert [s['name'] for s in listed] == ['Second', 'First']
    assert 'data' not in listed[0]

    assert manager.delete_scenario(first['id']).ok
    assert [s['id'] for s in manager.list_scenarios().data] == [second['id']]
    assert manager.load_scenario(first['id']).code == NOT_FOUND


def test_corrupt_scenario_leaves_session_alone(manager, store, seeded):
    account_id = seeded['account']['id']
    manager.update('account', account_id, {'starting_balance': 5.0})
    broken = store.insert('planning_scenarios', {'name': 'Broken', 'data': '{not json'}).data
    wrong_shape = store.insert('planning_scenarios', {'name': 'Odd', 'data': '{"month": "2026-03"}'}).data

    for scenario in (broken, wrong_shape):
        result = manager.load_scenario(scenario['id'])
        assert result.code == CORRUPT_SCENARIO
    assert manager.get('account', account_id).data['starting_balance'] == 5.0
    assert manager.can_undo


def test_export_and_import(manager, seeded, tmp_path):
    manager.create('goal', {'name': 'Car', 'target_amount': 4000.0, 'target_date': '2027-01-01'})
    saved = manager.save_scenario('Buy a car').data

    target = tmp_path / 'exports' / 'car.json'
    exported = manager.export_scenario(saved['id'], target)
    assert exported.ok
    assert exported.data == target
    written = json.loads(target.read_text(encoding='utf-8'))
    assert written['name'] == 'Buy a car'
    assert written['session']['month'] == '2026-03'

    imported = manager.import_scenario(target, name='Copy')
    assert imported.ok
    assert imported.data['name'] == 'Copy'
    assert imported.data['id'] != saved['id']
    assert manager.load_scenario(imported.data['id']).data.get('goal', PendingId(1))['name'] == 'Car'


def test_import_reports_bad_files(manager, tmp_path):
    garbage = tmp_path / 'garbage.json'
    garbage.write_text('not json', encoding='utf-8')
    assert manager.import_scenario(garbage).code == CORRUPT_SCENARIO

    wrong = tmp_path / 'wrong.json'
    wrong.write_text('{"name": "x", "session": []}', encoding='utf-8')
    assert manager.import_scenario(wrong).code == CORRUPT_SCENARIO

    assert manager.import_scenario(tmp_path / 'missing.json').code == IO_ERROR


def test_session_dict_encodes_pending_ids():
    session = SandboxSession(month='2026-03')
    pending = session.allocate_id()
    session.tables['goals'][pending] = {'id': pending, 'name': 'Car'}
    data = session.to_dict()
    assert data['tables']['goals'] == [{'id': {'pending': 1}, 'name': 'Car'}]
    assert json.loads(json.dumps(data)) == data
    assert SandboxSession.from_dict(data) == session
    with pytest.raises(ValueError):
        SandboxSession.from_dict({'month': 'March', 'tables': {}})
