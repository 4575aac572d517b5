"""
Petlog RAG - Prompt Templates & Context Strings
================================================
Centralised prompt text for the persona chat and the fixed strings the
context assembler emits.  All user-facing text lives here so it can be
reviewed independently of application logic.

Exports
-------
NO_MEMORY_PLACEHOLDER, CONTEXT_ENTRY_TEMPLATE, CONTEXT_LABEL_TEMPLATE,
UNKNOWN_DATE, PERSONA_SYSTEM_PROMPT, PERSONA_PROMPT_TEMPLATE,
GENERATION_FAILED_RESPONSE, HEALTH_NOTE_PREFIX.
"""

# ══════════════════════════════════════════════════════════════════════
#  CONTEXT ASSEMBLY
# ══════════════════════════════════════════════════════════════════════
# Entries must not contain the section markers used by PERSONA_PROMPT_TEMPLATE.

NO_MEMORY_PLACEHOLDER: str = "(관련된 일기나 건강 기록을 찾지 못했습니다. 일반적인 정보를 기반으로 답변합니다.)"

CONTEXT_LABEL_TEMPLATE: str = "관련 기록 ({label}):"

CONTEXT_ENTRY_TEMPLATE: str = "[{rank}] ({date}) {content}"

UNKNOWN_DATE: str = "날짜 미상"


# ══════════════════════════════════════════════════════════════════════
#  WRITE PATH
# ══════════════════════════════════════════════════════════════════════

HEALTH_NOTE_PREFIX: str = "[HEALTH] "


# ══════════════════════════════════════════════════════════════════════
#  PERSONA CHAT
# ══════════════════════════════════════════════════════════════════════

PERSONA_SYSTEM_PROMPT: str = """당신은 반려동물의 건강과 행복을 전담하는 AI 건강 도우미입니다.

역할:
- 반려동물의 과거 일기, 건강 기록을 기반으로 개인화된 조언 제공
- 특정 일기나 건강 패턴에 대해 깊이 있는 피드백
- 따뜻하고 공감하는 톤으로 의사소통

가이드라인:
- 제공된 기록이 있으면 참고하여 답변하고, 없으면 일반적인 정보로 답변
- 심각한 건강 문제는 수의사 상담 권장
- 항상 한국어로 응답
- 응답은 300-500자 범위 내로 유지"""

PERSONA_PROMPT_TEMPLATE: str = """다음은 반려동물의 기록과 사용자의 질문입니다.

=== 반려동물 관련 기록 ===
{context}

=== 사용자 질문 ===
{question}

위의 기록을 참고하여 따뜻하고 도움이 되는 답변을 해주세요."""

GENERATION_FAILED_RESPONSE: str = "죄송해요, 지금은 답변을 만들 수 없어요. 잠시 후 다시 시도해 주세요."
