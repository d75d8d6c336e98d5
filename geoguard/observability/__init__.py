# Подмодули импортируются явно: logging зависит от settings, metrics нет.
