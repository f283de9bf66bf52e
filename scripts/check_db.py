import os
import sqlite3

db_path = "intranet.db"

def check_db():
    if not os.path.exists(db_path):
        print(f"Error: {db_path} not found")
        return

    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    print("Tables in DB:")
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
    tables = cursor.fetchall()
    for table in tables:
        cursor.execute(f"SELECT COUNT(*) FROM {table[0]}")
        print(f" - {table[0]} ({cursor.fetchone()[0]} rows)")
        cursor.execute(f"PRAGMA table_info({table[0]})")
        for col in cursor.fetchall():
            print(f"   * {col[1]} ({col[2]})")

    print("\nUsers in DB:")
    cursor.execute("SELECT id, emp_id, email, role, reporting_manager_id FROM users")
    users = cursor.fetchall()
    if not users:
        print(" (No users found)")
    for user in users:
        print(f" - ID: {user[0]}, Emp: {user[1]}, Email: {user[2]}, Role: {user[3]}, Reports to: {user[4]}")

    conn.close()

if __name__ == "__main__":
    check_db()
