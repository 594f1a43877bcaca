"""External services: AI symptom analysis, backend storage and emergency alerts."""
