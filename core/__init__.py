# Core module for the Deep Work focus timer: engine, persistence, notifications
