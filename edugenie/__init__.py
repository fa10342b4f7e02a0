"""EduGenie backend coordination and response repair."""
