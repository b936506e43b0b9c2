import contextlib
import types
from datetime import date

from budget_planner import app
from budget_planner.results import NOT_FOUND, Result
from budget_planner.temporal import PendingId


def test_format_currency():
    assert app.format_currency(1234.5) == '$1,234.50'
    assert app.format_currency(-20) == '-$20.00'
    assert app.format_currency(None) == '-'


def test_entities_frame_renders_ids_as_text():
    rows = [
        {'id': 3, 'name': 'Rent', 'bucket_id': 1, 'created_at': 'x'},
        {'id': PendingId(1), 'name': 'Food', 'bucket_id': 2, 'created_at': 'y'},
    ]
    frame = app.entities_frame(rows, ['id', 'name', 'bucket_id'])
    assert list(frame.columns) == ['id', 'name', 'bucket_id']
    assert list(frame['id']) == ['3', 'pending:1']
    assert app.entities_frame([]).empty


def test_show_result_reports_errors(monkeypatch):
    shown = {}
    st_mock = types.SimpleNamespace(
        error=lambda message: shown.setdefault('error', message),
        success=lambda message: shown.setdefault('success', message),
    )
    monkeypatch.setattr(app, 'st', st_mock)

    assert app.show_result(Result.failure(NOT_FOUND, 'goal 4 not found')) is False
    assert shown['error'] == 'NOT_FOUND: goal 4 not found'

    assert app.show_result(Result.success(1), 'Saved') is True
    assert shown['success'] == 'Saved'


def test_rerun_prefers_streamlit_rerun(monkeypatch):
    called = {}
    monkeypatch.setattr(app, 'st', types.SimpleNamespace(rerun=lambda: called.setdefault('method', 'rerun')))
    app._rerun()
    assert called['method'] == 'rerun'


def test_rerun_falls_back_to_experimental(monkeypatch):
    called = {}
    st_mock = types.SimpleNamespace(experimental_rerun=lambda: called.setdefault('method', 'experimental'))
    monkeypatch.setattr(app, 'st', st_mock)
    app._rerun()
    assert called['method'] == 'experimental'


def test_build_services_wires_one_store(tmp_path):
    from budget_planner.db import Store

    services = app.build_services(Store(tmp_path / 'app.db'))
    assert services.budget.store is services.store
    assert services.planner.resolver is services.resolver
    assert len(services.budget.get_buckets().data) == 5
    assert services.summary.get_budget_summary('2026-03').ok


def test_parse_date_text():
    assert app.parse_date_text('2026-03-05, 2026-03-19,') == ['2026-03-05', '2026-03-19']
    assert app.parse_date_text('') == []


def test_lookup_options_skip_deleted_rows():
    rows = [
        {'id': 1, 'bank_name': 'First Bank'},
        {'id': PendingId(2), 'bank_name': 'New Bank'},
        {'id': 3, 'bank_name': 'Closed', 'is_deleted': 1},
    ]
    assert app.lookup_options('account', rows) == {'First Bank (1)': 1, 'New Bank (pending:2)': PendingId(2)}


def _fake_streamlit(submitted=True):
    return types.SimpleNamespace(
        form=lambda key: contextlib.nullcontext(),
        text_input=lambda label, value='', key=None: value,
        number_input=lambda label, value=0.0, step=None, key=None: value,
        date_input=lambda label, value=None, key=None: value,
        selectbox=lambda label, options, index=0, key=None: options[index],
        form_submit_button=lambda label: submitted,
    )


def test_entity_form_prefills_current_values(monkeypatch):
    monkeypatch.setattr(app, 'st', _fake_streamlit())
    lookups = {
        'account': {'First Bank (1)': 1, 'New Bank (pending:2)': PendingId(2)},
        'category': {'Rent (4)': 4},
        'bucket': {'Major fixed (1)': 1, 'Minor variable (4)': 4},
    }
    current = {
        'description': 'Gym', 'amount': 40.0, 'bucket_id': 4, 'category_id': 4,
        'account_id': PendingId(2), 'due_dates': '["2026-03-03", "2026-03-17"]',
    }
    values = app.entity_form('planned_expense', 'edit', lookups, current=current)
    assert values == {
        'description': 'Gym',
        'amount': 40.0,
        'bucket_id': 4,
        'category_id': 4,
        'account_id': PendingId(2),
        'due_dates': ['2026-03-03', '2026-03-17'],
    }


def test_entity_form_defaults_and_unsubmitted(monkeypatch):
    monkeypatch.setattr(app, 'st', _fake_streamlit())
    values = app.entity_form('transaction', 'add', {'account': {'First Bank (1)': 1}})
    assert values['date'] == date.today().isoformat()
    assert values['type'] == 'income'
    assert values['account_id'] == 1
    assert values['bucket_id'] is None

    monkeypatch.setattr(app, 'st', _fake_streamlit(submitted=False))
    assert app.entity_form('goal', 'add', {}) is None


def test_every_kind_has_a_form():
    assert set(app.FORM_FIELDS) == set(app.KIND_LABELS) | {'transaction'}
    assert set(app.DISPLAY_COLUMNS) == set(app.FORM_FIELDS)
    assert 'Ledger' in app.VIEWS
