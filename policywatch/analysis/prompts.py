from langchain_core.prompts import ChatPromptTemplate


POLICY_ANALYST_SYSTEM_PROMPT = """You are an expert legal analyst focused on consumer protection. You review Terms of Service, Privacy Policies and similar legal documents on behalf of ordinary users.

Your job:
1. Explain legal language in plain words a 6th grade reader can follow.
2. Point out clauses that are risky, unfair or worrying for users.
3. Point out clauses that protect users or are notably fair.
4. Stay objective and balanced.

Prefer accuracy over speculation. When a clause is unclear, say it is unclear instead of guessing."""


RED_FLAG_TYPES = [
    "forced_arbitration", "class_action_waiver", "sell_data", "no_deletion_right",
    "automatic_consent", "hidden_terms", "excessive_data_collection", "biometric_data",
]
YELLOW_FLAG_TYPES = [
    "vague_data_sharing", "third_party_sharing", "location_tracking", "one_sided_terms",
    "vague_language", "continued_use_consent",
]
GREEN_FLAG_TYPES = [
    "clear_deletion_rights", "easy_opt_out", "plain_language", "no_data_selling",
    "minimal_data_collection", "proactive_notifications", "data_portability", "gdpr_compliant",
]


CHUNK_ANALYSIS_PROMPT = """Analyze this section of a legal document (section {index} of {total}).

1. Summarize it in plain English (6th grade level).
2. Find clauses that are:
   - risky or unfair to users (red flags),
   - somewhat concerning (yellow flags),
   - especially protective or fair (green flags).
3. For every flag, say in one or two sentences why it matters.

Respond with JSON only, in exactly this shape:

{{
  "plain_summary": "Plain English summary of this section",
  "flags": {{
    "red": [
      {{"type": "forced_arbitration", "description": "Disputes must go to binding arbitration instead of court.", "section_reference": "Section 12", "severity": 10}}
    ],
    "yellow": [
      {{"type": "vague_data_sharing", "description": "Data may be shared with 'partners' who are never named.", "section_reference": "Section 4", "severity": 6}}
    ],
    "green": [
      {{"type": "clear_deletion_rights", "description": "You can delete your data from account settings.", "section_reference": "Section 3", "severity": 3}}
    ]
  }}
}}

Severity is an integer from 1 (trivial) to 10 (severe).

Flag types to look for:
- Red: {red_types}
- Yellow: {yellow_types}
- Green: {green_types}

Section:

<<<SECTION_START>>>
{chunk}
<<<SECTION_END>>>"""


OVERALL_SUMMARY_PROMPT = """Using the section summaries and findings below, write an overall summary of this {document_type} from {company_name}.

Section summaries:
{chunk_summaries}

Findings:
- {red_count} serious concerns (red flags)
- {yellow_count} moderate concerns (yellow flags)
- {green_count} positive aspects (green flags)

Provide:
1. An executive summary of what this document means for users.
2. Practical recommendations for users.

Format both fields as markdown: short bullet points, **bold** for key terms, one or two sentences per paragraph. Recommendations are a numbered list.

Respond with JSON only:
{{
  "summary": "markdown summary",
  "recommendations": "markdown numbered list"
}}"""


FAQ_PROMPT = """Write 5-8 frequently asked questions a non-lawyer would want answered about this {document_type}.

Findings from the analysis:
- Red flags: {red_types}
- Yellow flags: {yellow_types}
- Green flags: {green_types}

Always cover:
- What data is collected
- How data is shared
- How to delete data or close the account
- How disputes are resolved

Respond with a JSON array only:
[
  {{
    "question": "What personal data does this company collect about me?",
    "short_answer": "One or two sentences.",
    "long_answer": "Two or three sentences with more detail.",
    "risk_level": 6,
    "what_to_watch_for": "The specific thing to look out for."
  }}
]"""


TAGS_PROMPT = """From this {document_type} analysis, list tags describing the topics and practices the policy covers.

Summaries:
{summaries}

Flags found:
- Red: {red_types}
- Yellow: {yellow_types}
- Green: {green_types}

Return a JSON array of 5-15 lowercase, hyphenated tags. Cover data types collected (e.g. "location-data", "biometric-data"), sharing practices (e.g. "third-party-sharing", "advertising"), user rights (e.g. "data-deletion", "opt-out"), legal terms (e.g. "arbitration", "gdpr", "ccpa"), billing (e.g. "auto-renewal", "refund") and security (e.g. "encryption", "data-retention").

Example: ["personal-data", "third-party-sharing", "data-deletion", "gdpr", "arbitration"]"""


CHANGE_ANALYST_SYSTEM_PROMPT = """You are an expert legal analyst who compares versions of the same legal document.

Your job:
1. Identify the meaningful changes between the two versions.
2. Judge whether each change helps or harms users.
3. Explain the changes in plain language.
4. Flag changes that reduce user rights or expand the company's power.

Ignore formatting and trivial wording changes."""


CHANGE_ANALYSIS_PROMPT = """Compare these two versions of a {document_type} from {company_name}.

{change_context}

OLD VERSION (sample):
<<<OLD_START>>>
{old_sample}
<<<OLD_END>>>

NEW VERSION (sample):
<<<NEW_START>>>
{new_sample}
<<<NEW_END>>>

Provide:
1. A summary of what changed.
2. An impact analysis of how the changes affect users.
3. Change flags for notable additions, removals and modifications.

Use markdown (short bullets, **bold** key terms) inside "summary" and "impact_analysis".

Respond with JSON only:
{{
  "summary": "markdown",
  "impact_analysis": "markdown",
  "change_flags": {{
    "new_clauses": [{{"type": "forced_arbitration", "description": "Added mandatory arbitration", "severity": 10}}],
    "removed_clauses": [{{"type": "added_deletion_right", "description": "Deletion rights removed", "severity": 8}}],
    "modified_clauses": [{{"type": "extended_retention", "description": "Retention extended from 30 to 90 days", "severity": 7}}],
    "neutral_changes": [{{"type": "clarification", "description": "Clarified cookie wording"}}]
  }},
  "overall_direction": "negative | positive | neutral | mixed"
}}

Change types:
- Negative: forced_arbitration, class_action_waiver, sell_data, removed_deletion_right, extended_retention, expanded_sharing, reduced_notice, automatic_consent, liability_expansion
- Positive: added_deletion_right, limited_sharing, shorter_retention, added_opt_out, clearer_language, added_notice, enhanced_security
- Neutral: clarification, formatting, typo_fix, reordering"""


CHANGE_CHUNK_PROMPT = """A passage of a legal document was edited.

REMOVED TEXT:
<<<REMOVED_START>>>
{removed_text}
<<<REMOVED_END>>>

ADDED TEXT:
<<<ADDED_START>>>
{added_text}
<<<ADDED_END>>>

Describe this single edit for a non-lawyer. Respond with JSON only:
{{
  "title": "Short title, e.g. 'Data retention extended'",
  "summary": "One or two plain sentences on what changed.",
  "impact": "positive | negative | neutral",
  "grade": "A-F grade for the new text compared with the old",
  "reason": "One sentence on why it matters."
}}"""


CHUNK_ANALYSIS_TEMPLATE = ChatPromptTemplate.from_messages([
    ("system", POLICY_ANALYST_SYSTEM_PROMPT),
    ("user", CHUNK_ANALYSIS_PROMPT),
])
OVERALL_SUMMARY_TEMPLATE = ChatPromptTemplate.from_messages([
    ("system", POLICY_ANALYST_SYSTEM_PROMPT),
    ("user", OVERALL_SUMMARY_PROMPT),
])
FAQ_TEMPLATE = ChatPromptTemplate.from_messages([
    ("system", POLICY_ANALYST_SYSTEM_PROMPT),
    ("user", FAQ_PROMPT),
])
TAGS_TEMPLATE = ChatPromptTemplate.from_messages([
    ("system", POLICY_ANALYST_SYSTEM_PROMPT),
    ("user", TAGS_PROMPT),
])
CHANGE_ANALYSIS_TEMPLATE = ChatPromptTemplate.from_messages([
    ("system", CHANGE_ANALYST_SYSTEM_PROMPT),
    ("user", CHANGE_ANALYSIS_PROMPT),
])
CHANGE_CHUNK_TEMPLATE = ChatPromptTemplate.from_messages([
    ("system", CHANGE_ANALYST_SYSTEM_PROMPT),
    ("user", CHANGE_CHUNK_PROMPT),
])
