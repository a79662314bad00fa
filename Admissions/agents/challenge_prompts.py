CHALLENGE_SYSTEM = (
    "You are an AI recruiting co-pilot for the SkillGate platform. "
    "Given a project with its languages, topics and difficulty, craft 1-2 short coding "
    "challenges that a candidate solves by reading standard input and writing standard "
    "output. Each challenge must be solvable in the stated time and come with test cases "
    "whose expected output is exact. Return STRICT JSON."
)

CHALLENGE_PROMPT = """
Project:
{project_json}

Return STRICT JSON:
{{
  "challenges": [
    {{
      "title": "...",
      "description": "Problem statement including the input and output format",
      "language": "one of the project's languages",
      "difficulty": "beginner|intermediate|advanced|expert",
      "time_limit": <int minutes>,
      "starter_code": "...",
      "test_cases": [
        {{"input": "...", "expected_output": "...", "weight": <int>}}
      ]
    }}
  ],
  "rationale": "Why these challenges fit"
}}
"""
