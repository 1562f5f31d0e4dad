EMOTION_PROMPT = """
Analyze the emotional tone of the user's message.
Return ONLY valid JSON with this schema:
{
  "joy": number,
  "sadness": number,
  "anger": number,
  "fear": number,
  "surprise": number
}

Rules:
- Every value is an intensity between 0 and 1.
- Use 0 for emotions that are absent. A neutral message is all zeros.
""".strip()


CHAIN_SUMMARY_PROMPT = """
You receive a chronological sequence of conversation turns that belong together.
Write a concise summary that captures the narrative flow, key topics and the
emotional progression, focusing on how the turns connect thematically or in time.
Return ONLY JSON:
{
  "summary": string
}
""".strip()


NARRATIVE_PROMPT = """
You receive several memory chains (name, summary, topics) for one user.
Combine them into a single coherent narrative of what has been going on for the user.
Return ONLY JSON:
{
  "narrative": string
}
""".strip()


BELIEF_EXTRACTION_PROMPT = """
Extract the beliefs, opinions or convictions the USER expresses in the conversation text.
Look for:
- explicit statements of belief ("I believe that...", "I'm convinced that...")
- strong opinions or values
- philosophical, ethical, political or religious stances
- personal principles or life philosophies

Return ONLY a JSON array (no prose). Each item:
{
  "belief_statement": string,
  "belief_category": string,
  "confidence_level": number,
  "belief_strength": number
}

Rules:
- Paraphrase the statement for clarity; keep it in the user's voice.
- category examples: personal, ethical, political, religious, scientific, professional.
- confidence_level and belief_strength are between 0 and 1.
- Return [] when the user expresses no belief.
""".strip()


GOAL_EXTRACTION_PROMPT = """
Identify the goals, objectives or aspirations the USER mentions in the conversation text.
Look for:
- explicit goals ("I want to...", "My goal is...")
- future plans, ambitions and learning objectives
- career, personal development or problem-solving targets

Return ONLY a JSON array (no prose). Each item:
{
  "goal_description": string,
  "goal_category": string,
  "priority_level": integer,
  "success_criteria": string
}

Rules:
- goal_description is a clear, actionable statement.
- category examples: career, personal, learning, relationship, health, financial.
- priority_level is between 1 and 10.
- Return [] when no goal is mentioned.
""".strip()


MENTAL_STATE_PROMPT = """
Based on the recent conversation history, infer the user's current mental and emotional state.
Return ONLY valid JSON with this schema:
{
  "dominant_emotion": string,
  "emotional_intensity": number,
  "cognitive_load": "low" | "normal" | "high" | "overwhelmed",
  "attention_focus": string,
  "decision_making_style": "analytical" | "intuitive" | "emotional" | "practical",
  "communication_style": "direct" | "indirect" | "verbose" | "concise",
  "stress_indicators": string[],
  "motivation_level": "low" | "neutral" | "high" | "very high",
  "inferred_needs": string[]
}

emotional_intensity is between 0 and 1.
""".strip()


EMOTION_TIMELINE_PROMPT = """
You receive one conversation turn between a user and an AI companion.
Detect the emotions the USER is experiencing. Consider:
- primary emotions: joy, sadness, anger, fear, surprise, disgust, trust, anticipation
- how intense each emotion is and how confident you are
- what triggered it (keywords or topics)
- how long it is likely to last
- how an empathetic companion should respond

Return ONLY valid JSON with this schema:
{
  "emotions": [
    {
      "type": "joy" | "sadness" | "anger" | "fear" | "surprise" | "disgust" | "trust" | "anticipation",
      "intensity": number,
      "confidence": number,
      "triggers": string[],
      "duration_minutes": integer,
      "empathy_response": string
    }
  ],
  "overall_mood": "positive" | "negative" | "neutral"
}

Rules:
- intensity is between 0 and 10; confidence is between 0 and 1.
- Return {"emotions": []} when the user shows no clear emotion.
""".strip()
