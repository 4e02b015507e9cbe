"""
Prompt and document templates.

Every prompt is data: a PromptTemplate holding `${field}` placeholders,
rendered against an interpolation map. Building a prompt never invokes an
agent, so prompt construction can be tested on its own.
"""

import string
from dataclasses import dataclass
from typing import List, Mapping


class PromptTemplateError(Exception):
    """A template was rendered without all of its fields."""
    pass


@dataclass(frozen=True)
class PromptTemplate:
    """A named text with `${field}` placeholders (`$$` is a literal dollar)."""
    name: str
    text: str

    @property
    def fields(self) -> List[str]:
        """Placeholder names in order of first appearance."""
        names = []
        for match in string.Template.pattern.finditer(self.text):
            name = match.group("named") or match.group("braced")
            if name and name not in names:
                names.append(name)
        return names

    def render(self, values: Mapping[str, object]) -> str:
        missing = [name for name in self.fields if name not in values]
        if missing:
            raise PromptTemplateError(
                f"Template '{self.name}' is missing values for: {', '.join(missing)}"
            )
        try:
            return string.Template(self.text).substitute({k: str(v) for k, v in values.items()})
        except ValueError as e:
            raise PromptTemplateError(f"Template '{self.name}' is malformed: {e}")


# =============================================================================
# Phase prompts
# =============================================================================

RESEARCH_PROMPT = PromptTemplate("research", """\
You are a RESEARCH AGENT. Gather insights to inform project specifications and quality standards.

## Project Context
${context}

## Tasks

1. **Analyze** the project description above. Extract URLs, product references, or domain terms.

2. **Browse referenced URLs** (if any) using web tools. Capture features, UI patterns, UX flows.

3. **Research 2-3 similar products** in this domain. For each, document features,
   UI patterns, UX patterns and quality aspects.

4. **Create** `${research_findings}` with these sections:
   - Project Context
   - Referenced URLs Analysis
   - Similar Products Analyzed
   - UI/UX Recommendations
   - Recommended Standards
   - Industry Best Practices
   - Technology Observations

5. When done, output: ${token}
""")

SPEC_PROMPT = PromptTemplate("spec", """\
You are a SPEC ENRICHMENT AGENT. Your job is to enrich feature specifications with concrete implementation details.

${context_section}

## Step 1: Extract the tech stack (do this first)

1. Read `${project_spec}`
2. Find the tech stack (look for "Technology Stack", "Tech Stack", "Technologies")
3. Create `${techstack}` with the EXACT technologies specified, plus the
   actual runnable commands to install dependencies, run the project, run
   the tests and lint. Derive commands from the project's real configuration
   files; never write placeholders.

## Step 2: Enforce the tech stack in all specs

Every feature spec MUST match the tech stack: language, framework, file
extensions, imports and test runner. If a spec uses the wrong stack, rewrite it completely.

## Inputs

1. `${project_spec}`
2. `${research_findings}` (if it exists)
3. Every spec in `${feature_specs_dir}/`
4. The codebase itself, to confirm the stack and find concrete file paths

## Existing specs to enrich:
${existing_specs}

## Your Tasks

1. Create `${techstack}` (mandatory first step)
2. For each feature spec: rewrite it if it does not match the stack, otherwise
   enrich it with concrete paths, interfaces and acceptance criteria
3. Create new specs as `${feature_specs_dir}/<feature-id>.spec.md` if none exist
4. Write `${features_file}` listing every feature id, one per line

Never delete an existing spec; improve it in place.

When done, output: ${token}
""")

STANDARDS_PROMPT = PromptTemplate("standards", """\
You are a STANDARDS GENERATION AGENT. Generate project-specific quality standards.

## Step 1: Read the tech stack

Read `${techstack}` first. It is the authoritative source; do not guess.
If it does not exist, read `${project_spec}` and extract the stack from it.

Detected from the project's configuration files: ${detected_stack}
Suggested test command: ${test_command}

## Step 2: Understand the project

- `${project_spec}` - project purpose, goals, features
- `${research_findings}` - industry patterns and best practices

## Step 3: Generate standards

Create `${standards}` as a checklist. Each standard has an id
(STD-T001, STD-S001, ...), a category, a one-line user story, a
**Verification** command for THIS project's stack and a list of
`- [ ]` acceptance criteria.

Rules:
1. Verification commands must match the actual stack (pytest for Python,
   cargo test for Rust, go test ./... for Go, the package.json scripts for Node).
2. Only include relevant categories: UI standards only for projects with a UI,
   API standards only if it exposes an API.
3. Functional standards come from the features in the project spec; do not invent features.
4. Include 15-25 standards across Testing (STD-T), Security (STD-S),
   Code Quality (STD-Q), Functional (STD-F), UI (STD-U) and Performance (STD-P).

When done, output: ${token}
""")

# =============================================================================
# Fallback artifacts
# =============================================================================

RESEARCH_PLACEHOLDER = PromptTemplate("research-placeholder", """\
# Research Findings

## Project Context
Research phase was skipped or did not complete.

## Similar Products Analyzed
No products were analyzed.

## UI/UX Recommendations
Use standard industry patterns.

## Recommended Standards
Follow standard quality practices.
""")

STANDARDS_FALLBACK = PromptTemplate("standards-fallback", """\
# Project Quality Standards

This document defines quality standards the QA Agent will verify.

## Detected Tech Stack
${detected_stack}

## Testing Standards

### STD-T001: Tests Pass
**Category**: Testing

As a developer, all project tests should pass before merging.

**Verification**: ${test_command}
**Acceptance Criteria**:
- [ ] All tests pass
- [ ] No skipped tests without justification

## Security Standards

### STD-S001: No Hardcoded Secrets
**Category**: Security

As a developer, no sensitive data should be in source code.

**Verification**: Search source files for password, secret, api_key patterns
**Acceptance Criteria**:
- [ ] No API keys in source code
- [ ] No passwords in source code
- [ ] Secrets use environment variables

## Code Quality Standards

### STD-Q001: No Lint Errors
**Category**: CodeQuality

As a developer, code should follow the project's style guidelines.

**Verification**: Run the project's configured lint command
**Acceptance Criteria**:
- [ ] Linter passes with no errors
- [ ] No warnings without documented exceptions
""")

PROJECT_SPEC_TEMPLATE = PromptTemplate("project-spec", """\
# Project Specification: ${project_name}

## Description
${description}

## Technology Stack
<!-- Filled in by the spec enrichment phase -->

## Features
<!-- One spec per feature in features/ -->
""")

FEATURE_SPEC_TEMPLATE = PromptTemplate("feature-spec", """\
# Feature Specification: ${feature_id}

## Meta
- **Feature ID**: FEAT-${stamp}
- **Created**: ${created}

## Overview
${description}

## Acceptance Criteria
- [ ] AC-1: define acceptance criteria
- [ ] AC-2: define acceptance criteria

## Technical Notes
<!-- Worker will determine implementation approach based on existing project patterns -->

## Definition of Done
- [ ] All acceptance criteria met
- [ ] Tests passing
- [ ] Status logged as COMPLETE
""")

# =============================================================================
# Interactive agent prompts
# =============================================================================

INTEGRATOR_PROMPT = PromptTemplate("integrator", """\
You are the SUPERVISOR AGENT for ${project_name}. You merge finished feature branches and coordinate the workers and the QA agent.

- Worker status logs: ${ledger_glob} (lines are `<ISO-8601> [<STATUS>] <text>`)
- Central mailbox: ${mailbox}. To send a message append:
  --- MESSAGE ---
  timestamp: <ISO-8601>
  from: ${agent_id}
  to: <agent-id>
  <body>
- Feature branches are named feature/<id>; merge them into ${base_branch}.

When every feature is merged, create ${all_merged}. After QA passes
(${qa_complete} exists), create ${project_complete}.
Messages from other agents arrive prefixed with [from:<agent-id>].
Start by reading the worker status logs.
""")

QA_PROMPT = PromptTemplate("qa", """\
You are the QA AGENT for ${project_name}. You MUST WAIT for a RUN_QA message (delivered as [from:<agent-id>] RUN_QA) before running any tests.

When you receive RUN_QA:
1. Read every standard in ${standards}
2. Run the test suite and verify each standard one by one
3. Write ${qa_report}:
   {"timestamp": "<ISO-8601>", "overall_pass": true|false,
    "results": [{"id": "STD-T001", "name": "...", "pass": true|false,
                 "details": "...", "affected_feature": "<feature-id if failed>"}]}
4. Create ${qa_complete} if ALL standards pass, otherwise ${qa_needs_fixes}

Identify which feature caused each failure. Start by reading your standards, then wait for messages.
""")

WORKER_PROMPT = PromptTemplate("worker", """\
You are a WORKER AGENT implementing the '${feature_id}' feature on branch ${branch}.

- Your feature spec: ${feature_spec}
- Tech stack and commands: ${techstack}
- Log progress by appending lines to ${ledger}:
  `<ISO-8601> [<STATUS>] <text>` with STATUS one of PENDING, IN_PROGRESS, BLOCKED, TESTING, COMPLETE, FAILED
- Central mailbox for questions: ${mailbox} (use `from: ${feature_id}`)

Commit your work on your branch and log COMPLETE when done. If you later
receive a FIX_TASK message, fix the listed checks, then log IN_PROGRESS and COMPLETE again.
Start by reading your feature spec.
""")

# Typed into the agent instead of the prompt itself; must stay one line
PROMPT_FILE_INSTRUCTION = PromptTemplate(
    "prompt-file",
    "Read ${prompt_file} and follow the instructions in it exactly.",
)

# =============================================================================
# Supervisor messages
# =============================================================================

RUN_QA_TOKEN = "RUN_QA"
FIX_TASK_TOKEN = "FIX_TASK"
MERGE_READY_TOKEN = "MERGE_READY"
NEW_FEATURE_TOKEN = "NEW_FEATURE"
QA_UNATTRIBUTED_TOKEN = "QA_UNATTRIBUTED"

MERGE_READY_MESSAGE = PromptTemplate("merge-ready", """\
${token}: all features report COMPLETE: ${features}
Merge each feature/<id> branch into ${base_branch}, then create ${all_merged}.""")

NEW_FEATURE_MESSAGE = PromptTemplate("new-feature", """\
${token}: ${feature_id} added to the project.
Spec at ${feature_spec}
Worker launched as agent: ${feature_id}""")
