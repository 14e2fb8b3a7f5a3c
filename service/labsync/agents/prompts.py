MEETING_EXTRACTION_PROMPT = """Extract meeting details from the following Telegram message. Return ONLY valid JSON with these exact fields:

{{
  "project_name": "string (required)",
  "client_details": {{
    "name": "string (required)",
    "email": "string (optional, null if not found)",
    "company": "string (optional, null if not found)"
  }},
  "meeting_date": "ISO 8601 date string (required, use current date if not specified)",
  "participants": ["array of participant names or usernames"],
  "estimated_budget": number (required, 0 if not specified),
  "timeline": "string (required, e.g., '2 weeks', '1 month', '3 months')",
  "requirements": "string (required, detailed project requirements)"
}}

Message: "{message_text}"

IMPORTANT:
- Extract all information accurately
- Keep the timeline wording from the message (e.g., "3 months", not "a quarter")
- If a field is not found, use reasonable defaults (e.g., current date for meeting_date, 0 for budget, empty array for participants)
- Return ONLY the JSON object, no markdown, no explanations
- Ensure all required fields are present"""


BUDGET_DESIGN_PROMPT = """You are an expert project budget analyst. Design a project budget that reflects the ACTUAL needs of this specific project. Return ONLY valid JSON with these exact fields:

{{
  "total_budget": number (should be close to estimated_budget: {estimated_budget}),
  "people_costs": {{
    "role_name_1": {{ "count": number, "rate": number (hourly), "hours": number, "total": number }},
    "role_name_2": {{ "count": number, "rate": number (hourly), "hours": number, "total": number }},
    ... (add specific roles relevant to the project, e.g., 'drone_pilot', 'ios_developer', 'prompt_engineer')
  }},
  "resource_costs": {{
    "electricity": number,
    "rent": number,
    "software_licenses": number,
    "hardware": number,
    "specific_resource_1": number,
    ... (add specific resources relevant to the project)
  }},
  "breakdown": [
    {{
      "category": "string (e.g., 'Development', 'Design', 'Infrastructure')",
      "item": "string (specific item name)",
      "quantity": number,
      "unit_cost": number,
      "total": number
    }}
  ]
}}

PROJECT DETAILS:
- Project Name: {project_name}
- Client: {client}
- Estimated Budget: ${estimated_budget}
- Timeline: {timeline} (approximately {timeline_months:.1f} months, {estimated_hours} hours)
- Requirements: {requirements}

COMPLEXITY ASSESSMENT:
{complexity_assessment}

IMPORTANT GUIDELINES:
1. Total budget should be approximately {estimated_budget} (within 10% variance, adjust only if requirements clearly indicate different needs)
2. People costs should account for 60-70% of total budget
3. Resource costs should account for 20-30% of total budget (scale rent and electricity by {timeline_months:.1f} months)
4. Breakdown should include specific line items taken from the requirements
5. Calculate hours from the timeline: {estimated_hours} hours available per full-time person
6. Use realistic market rates for roles
7. Use role keys in snake_case that name the actual specialty the project needs (e.g., 'senior_react_dev', 'ux_researcher', 'cloud_architect')
8. DO NOT use generic roles like 'lead', 'manager', 'developer', 'designer', 'qa' unless specifically requested
9. Return ONLY the JSON object, no markdown, no explanations"""
