"""Domain models shared by the server and the client."""
