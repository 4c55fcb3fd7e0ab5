from trivia import db
from trivia.models import Question, QuestionPack

SEED_PACKS = [
    {
        'name': 'General Knowledge',
        'description': 'A mix of questions from various topics',
        'difficulty': 'medium',
        'category': 'general',
        'questions': [
            ('What is the capital of France?', ['London', 'Berlin', 'Paris', 'Madrid'], 2, 20),
            ('How many continents are there?', ['5', '6', '7', '8'], 2, 15),
            ('What is the largest planet in our solar system?', ['Earth', 'Mars', 'Saturn', 'Jupiter'], 3, 20),
            ('Who painted the Mona Lisa?', ['Van Gogh', 'Da Vinci', 'Picasso', 'Rembrandt'], 1, 20),
            ('What is the currency of Japan?', ['Yuan', 'Won', 'Yen', 'Rupee'], 2, 15),
        ],
    },
    {
        'name': 'Pop Culture',
        'description': 'Movies, music, celebrities, and trends',
        'difficulty': 'easy',
        'category': 'entertainment',
        'questions': [
            ('Which movie won the Oscar for Best Picture in 2020?',
             ['1917', 'Joker', 'Parasite', 'Once Upon a Time in Hollywood'], 2, 25),
            ('Who is the lead singer of Queen?', ['Freddie Mercury', 'Brian May', 'Roger Taylor', 'John Deacon'], 0, 15),
            ('In which year was the first iPhone released?', ['2005', '2006', '2007', '2008'], 2, 20),
            ('Which social media platform was founded by Mark Zuckerberg?',
             ['Twitter', 'Instagram', 'Facebook', 'LinkedIn'], 2, 10),
            ('What is the highest-grossing film of all time?',
             ['Avengers: Endgame', 'Avatar', 'Titanic', 'Star Wars: The Force Awakens'], 1, 20),
        ],
    },
    {
        'name': 'E2E Test Pack',
        'description': 'Short timers for end-to-end runs',
        'difficulty': 'easy',
        'category': 'testing',
        'questions': [
            ('What is 2 + 2?', ['3', '4', '5', '6'], 1, 3),
            ('Which color is the sky on a clear day?', ['Green', 'Red', 'Blue', 'Yellow'], 2, 3),
        ],
    },
]


def seed_question_packs(packs=SEED_PACKS, points=100):
    created = []
    for entry in packs:
        pack = QuestionPack(
            name=entry['name'],
            description=entry['description'],
            difficulty=entry['difficulty'],
            category=entry['category'],
            question_count=len(entry['questions']),
        )
        db.session.add(pack)
        db.session.flush()
        for order, (text, options, correct, time_limit) in enumerate(entry['questions'], start=1):
            q = Question(pack_id=pack.id, text=text, correct_answer_index=correct,
                         time_limit=time_limit, points=points, order=order)
            q.options = options
            db.session.add(q)
        created.append(pack)
    db.session.commit()
    return created
