"""Result channels feeding the execution coordinator."""
