"""Starter decision files used by ``init`` and ``template``."""

from __future__ import annotations

BASIC = """\
# Architecture Decisions

<!-- DECISION-001 -->
## Decision: Database access goes through the repository layer

**Status**: Active
**Date**: 2026-01-15
**Severity**: Warning

**Files**:
- `src/db/**`
- `src/repositories/**`

### Context
Queries outside the repository layer bypass connection pooling and auditing.
Keep SQL inside `src/repositories/`.

---

<!-- DECISION-002 -->
## Decision: Generated clients are not edited by hand

**Status**: Active
**Date**: 2026-01-15
**Severity**: Critical

**Files**:
- `src/generated/**`
- `!src/generated/README.md`

### Context
Regenerate from the OpenAPI schema instead.
"""

ADVANCED_RULES = r"""# Architecture Decisions (rules)

<!-- DECISION-API-001 -->
## Decision: Public API changes need a schema update

**Status**: Active
**Date**: 2026-02-01
**Severity**: Critical

**Rules**:
```json
{
  "match_mode": "all",
  "conditions": [
    {
      "type": "file",
      "pattern": "src/api/**/*.py",
      "exclude": ["**/*_test.py"],
      "content_rules": [{ "mode": "regex", "pattern": "@router\\.(get|post|put|delete)" }]
    },
    {
      "type": "file",
      "pattern": "openapi/**/*.yaml"
    }
  ]
}
```

### Context
Route changes without a schema change leave generated clients out of date.

---

<!-- DECISION-CONFIG-001 -->
## Decision: Feature flags are reviewed by the platform team

**Status**: Active
**Date**: 2026-02-01
**Severity**: Warning

**Rules**:
```json
{
  "match_mode": "any",
  "conditions": [
    {
      "type": "file",
      "pattern": "config/**/*.json",
      "content_rules": [{ "mode": "json_path", "paths": ["features.flags"] }]
    },
    {
      "type": "file",
      "pattern": "src/settings.py",
      "content_rules": [{ "mode": "line_range", "start": 1, "end": 40 }]
    }
  ]
}
```

### Context
Flag defaults live at the top of `src/settings.py` and under `features.flags`.
"""

SECURITY = r"""# Security Decisions

<!-- DECISION-SEC-001 -->
## Decision: No hardcoded credentials

**Status**: Active
**Date**: 2026-03-10
**Severity**: Critical

**Rules**:
```json
{
  "match_mode": "any",
  "conditions": [
    {
      "type": "file",
      "pattern": "**/*",
      "exclude": ["**/*.md", "tests/**"],
      "content_rules": [
        { "mode": "regex", "pattern": "(password|secret|api_key)\\s*=\\s*['\"][^'\"]+['\"]", "flags": "i" },
        { "mode": "string", "patterns": ["BEGIN RSA PRIVATE KEY", "AKIA"] }
      ]
    }
  ]
}
```

### Context
Secrets belong in the secret manager, never in the repository.

---

<!-- DECISION-SEC-002 -->
## Decision: Authentication code needs a security review

**Status**: Active
**Date**: 2026-03-10
**Severity**: Warning

**Files**:
- `src/auth/**`
- `**/middleware/auth*`

### Context
Tag the security team on any change to authentication.
"""

TEMPLATES: dict[str, str] = {
    "basic": BASIC,
    "advanced-rules": ADVANCED_RULES,
    "security": SECURITY,
}


def get_template(name: str) -> str:
    try:
        return TEMPLATES[name]
    except KeyError:
        raise KeyError(f"Unknown template {name!r}; available: {', '.join(TEMPLATES)}") from None
