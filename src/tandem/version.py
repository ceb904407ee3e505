"""Agent version tracking.

AGENT_VERSION tracks the agent's behavior: prompts, tools, built-in
features and agent types. Bump it when that behavior changes, not for
dependency updates or infrastructure changes. Saved session results
carry it so runs can be compared across versions.

Bump rules:
- Patch (0.1.x): bug fixes, config tweaks, tool fixes
- Minor (0.x.0): prompt changes, new tools, new agent types
- Major (x.0.0): loop or pool semantics change
"""

AGENT_VERSION = "0.1.0"
