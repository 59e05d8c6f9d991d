"""Study material generator: topic → researched, validated, structured document."""
