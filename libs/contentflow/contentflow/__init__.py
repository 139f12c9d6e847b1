"""ContentFlow: persistence for transcripts, insights, posts and schedules."""
