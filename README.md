# echodesk

echodesk keeps track of the coding agents you run locally: the tasks they
work on, the terminal sessions they own, the alerts those sessions raise when
they need a human, and runtime issues reported by the rest of the system. All
state lives in a single SQLite database, accessed through the standard
library's `sqlite3`.

## Install

```
pip install echodesk
```

For running the test suite:

```
pip install "echodesk[test]"
pytest
```

## What is in the package

- `echodesk.db.database.Database`: the store. Open it with
  `Database.connect(url)`, where `url` is `sqlite::memory:`, `sqlite://<path>`
  or a plain file path. The file is created if missing, and the schema is
  created on connect. It supports use as a context manager and `close()`.
  - Tasks: `create_task`, `update_task`, `move_task_state`, `delete_task`,
    `get_task`, `list_tasks`.
  - Agents: `create_agent`, `assign_agent_to_task`, `get_agent`,
    `list_agents`, `list_agent_rows` (agents joined with task title, latest
    open session and open alert count), `update_agent_snippet`.
  - Managed sessions: `create_managed_session`, `update_session_status`,
    `end_session`, `end_session_if_open`,
    `mark_session_stalled_if_not_needs_input`, `update_session_heartbeat`,
    `mark_session_needs_input`, `clear_session_needs_input`,
    `attach_session_context`, `attach_terminal_session`,
    `detach_terminal_session`, `set_session_pid`, `delete_managed_session`,
    `get_managed_session`, `list_managed_sessions`.
  - Session events: `insert_session_event`, `list_session_events`.
  - Session alerts: `create_session_alert`,
    `create_session_alert_with_enrichment` (with `AlertEnrichmentInput` from
    `echodesk.db.alerts`), `get_session_alert`,
    `update_session_alert_enrichment`, `acknowledge_session_alert`,
    `snooze_session_alert` (1 to 1440 minutes), `escalate_session_alert`,
    `resolve_session_alert`, `alert_resolution_latency_ms`,
    `list_session_alerts`, `list_unresolved_session_alerts`. An open alert
    with the same session, reason and message is refreshed rather than
    duplicated.
  - Runtime issues: `report_runtime_issue` (one row per kind, counting
    occurrences), `get_runtime_issue`, `list_visible_runtime_issues`,
    `dismiss_runtime_issue`, `clear_runtime_issue`.
  - Linear issues: `upsert_linear_issue`, `get_linear_issue`.

  Each agent's `attention_state` is kept up to date: `blocked` while it has
  an open critical alert, `needs_input` while it has any other open alert or a
  session waiting for input, `ok` otherwise. Snoozed alerts do not count.
  Missing rows raise `LookupError`; attaching to an ended or failed session
  raises `ValueError`.
- `echodesk.db.models`: the records the store returns (`Task`, `Agent`,
  `ManagedSession`, `SessionEvent`, `SessionAlert`, `RuntimeIssue`,
  `AgentRow`, `StartSessionRequest`, `SessionStatusSummary`), the wake action
  outcomes `SessionStarted`, `StatusReply` and `PromptRequired`,
  `to_camel_dict()` for the camelCase form sent to a UI, and
  `wake_action_to_dict()` for outcomes tagged by `type`.
- `echodesk.config`: `load_config()` reads `~/.echo/config.toml` on top of
  the built-in defaults (`EchoConfig.default()`); `user_config_path()` tells
  you where it looks.
- `echodesk.enrichment`: `sanitize_display_text(raw, max_chars)` strips
  terminal escape sequences and control characters, collapses whitespace and
  truncates with `…`; `resolve_generate_endpoint()` turns a model base URL
  into its `/api/generate` URL; the coroutine `enrich_issue_message()` asks
  that endpoint for a short rewrite of an issue message and returns an
  `EnrichmentResult` whose `status` is `success` or `failed` (it never
  raises).
- `echodesk.events`: `TaskUpdatedEvent` and `AgentUpdatedEvent` payloads with
  `to_dict()`, and the `EchoState` holder.

## Example

```python
from echodesk.db.database import Database

with Database.connect("sqlite::memory:") as db:
    task = db.create_task("Investigate flaky test")
    agent = db.create_agent("Agent A", "opencode", None, task.id)

    session = db.create_managed_session(
        "opencode", "opencode", "[]", None, agent.id, task.id, None
    )
    db.update_session_status(session.id, "active", None)

    alert = db.create_session_alert(
        session.id, agent.id, "warning", "input_prompt", "Please confirm", True
    )
    print(db.get_agent(agent.id).attention_state)   # needs_input

    db.resolve_session_alert(alert.id)
    print(db.get_agent(agent.id).attention_state)   # ok
```

Cleaning text for display:

```python
from echodesk.enrichment import sanitize_display_text

sanitize_display_text("\x1b[31merror\x1b[0m\nline\0\tmore", 64)   # 'error line more'
sanitize_display_text("1234567890", 5)                             # '1234…'
```

## Configuration

`~/.echo/config.toml` may set any of the fields of `EchoConfig`, for example:

```toml
hotkey = "cmd+shift+v"
model_endpoint = "http://localhost:11434"
voice_summary_loop_interval_sec = 45
```

Keys left out keep their defaults; `voice_summary_loop_interval_sec` is never
set below 15. A value of the wrong type or a malformed file raises
`ValueError`.

## What it does not do

echodesk is a library. It has no command-line program, no server and no user
interface. It does not start or manage terminal processes, does not read or
parse agent output, does not record telemetry and does not handle voice
input: the configuration fields for hotkeys, audio and speech recognition are
only loaded, not acted on. The only network access is the model request made
by `enrich_issue_message`.