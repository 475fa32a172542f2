"""Account identity and onboarding protocol."""
