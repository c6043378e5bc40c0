"""Stage builders: post-value resolution, responses, renal decline, episodes, risk scores."""
